from typing import Any

from pydantic import BaseModel, Field


class SecureFile(BaseModel):
    id: str
    name: str


class SecureFileList(BaseModel):
    value: list[SecureFile]


class Pipeline(BaseModel):
    id: int
    name: str


class PipelineList(BaseModel):
    value: list[Pipeline]


class PipelineMatch(BaseModel):
    key: str
    pipeline: Pipeline | None
    # -1 when the project has no pipelines at all
    score: int


class ResourceReference(BaseModel):
    type: str
    id: str


class Authorization(BaseModel):
    authorized: bool


class PipelineAuthorization(BaseModel):
    id: int
    authorized: bool


class PermissionUpdate(BaseModel):
    resource: ResourceReference
    allPipelines: Authorization
    pipelines: list[PipelineAuthorization]


class RunResources(BaseModel):
    repositories: dict[str, Any] = Field(default_factory=dict)


class RunPipelineRequest(BaseModel):
    resources: RunResources = Field(default_factory=RunResources)


class ApiResponse(BaseModel):
    status: int
    data: Any = None
    continuation_token: str | None = None
    sterile: bool = False


class ReplaceResult(BaseModel):
    project: str
    name: str
    replaced_id: str | None = None
    already_absent: bool = False
    upload_status: int


class RunResult(BaseModel):
    project: str
    pipeline_id: int
    status: int
    run_id: int | None = None
