from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from env_relay.exceptions import MalformedPayloadError
from env_relay.utils import split_repo_full_name


class Repository(BaseModel):
    full_name: str

    @field_validator("full_name")
    @classmethod
    def _owner_and_name(cls, value: str) -> str:
        split_repo_full_name(value)
        return value


class Commit(BaseModel):
    modified: list[str]
    added: list[str] = []
    removed: list[str] = []


class PushEvent(BaseModel):
    repository: Repository
    commits: list[Commit]
    ref: str | None = None
    after: str | None = None

    @classmethod
    def parse(cls, data: Any) -> "PushEvent":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedPayloadError(f"Malformed push payload: {e}") from e

    def changed_files(self, include_added: bool = False) -> list[str]:
        """All changed paths in commit order, duplicates included."""
        files = []
        for commit in self.commits:
            if include_added:
                files.extend(commit.added)
            files.extend(commit.modified)
        return files


class Stage(StrEnum):
    fetch = "fetch"
    replace = "replace"
    match = "match"
    grant = "grant"
    trigger = "trigger"


class FileOutcome(BaseModel):
    path: str
    name: str
    project: str
    replaced: bool = False
    pipeline_id: int | None = None
    score: int | None = None
    run_id: int | None = None
    failed_stage: Stage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_stage is None

    @property
    def triggered(self) -> bool:
        return self.ok and self.pipeline_id is not None


class DispatchReport(BaseModel):
    repository: str
    ref: str
    outcomes: list[FileOutcome] = []

    @property
    def failed(self) -> list[FileOutcome]:
        return [o for o in self.outcomes if not o.ok]
