class RelayError(Exception):
    """Base class for all errors raised by the env relay."""

    pass


class ConfigError(RelayError):
    """Raised when a required credential or identifier is missing."""

    pass


class AuthError(RelayError):
    """Raised when a webhook signature cannot be verified."""

    pass


class MalformedPayloadError(RelayError, ValueError):
    """Raised when a webhook body is not valid JSON or misses required fields."""

    pass


class StageError(RelayError):
    """Base class for per-file errors. Abandons the file, never the dispatch."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FetchError(StageError):
    """Raised when a file cannot be retrieved from GitHub."""

    pass


class ArtifactListError(StageError):
    """Raised when the secure files of a project cannot be listed."""

    pass


class ArtifactDeleteError(StageError):
    """Raised when an existing secure file cannot be deleted."""

    pass


class ArtifactUploadError(StageError):
    """Raised when a secure file upload is rejected."""

    pass


class ArtifactLookupError(StageError):
    """Raised when a secure file expected to exist is not found."""

    pass


class PipelineListError(StageError):
    """Raised when the pipelines of a project cannot be listed."""

    pass


class PermissionGrantError(StageError):
    """Raised when a secure file permission update is rejected."""

    pass


class TriggerError(StageError):
    """Raised when a pipeline run cannot be started."""

    pass
