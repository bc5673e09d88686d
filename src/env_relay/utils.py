import posixpath
from typing import Mapping


def artifact_name(path: str) -> str:
    """Name of the secure file for a repository path (its last segment)."""
    return posixpath.basename(path) or path


def resolve_project(filename: str, rules: Mapping[str, str], default: str) -> str:
    for prefix, project in rules.items():
        if filename.startswith(prefix):
            return project
    return default


def split_repo_full_name(full_name: str) -> tuple[str, str]:
    owner, sep, repo = full_name.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise ValueError(
            f"Invalid repository full name {full_name!r}, expected 'owner/repo'"
        )
    return owner, repo
