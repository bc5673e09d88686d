import asyncio
from typing import Any

import aiohttp
from pydantic import ValidationError
from sanic.log import logger

from env_relay import metrics
from env_relay.config import Config
from env_relay.azure.models import (
    ApiResponse,
    Authorization,
    PermissionUpdate,
    Pipeline,
    PipelineAuthorization,
    PipelineList,
    PipelineMatch,
    ReplaceResult,
    ResourceReference,
    RunPipelineRequest,
    RunResult,
    SecureFile,
    SecureFileList,
)
from env_relay.azure.utils import find_secure_file, select_pipeline
from env_relay.exceptions import (
    ArtifactDeleteError,
    ArtifactListError,
    ArtifactLookupError,
    ArtifactUploadError,
    PermissionGrantError,
    PipelineListError,
    StageError,
    TriggerError,
)


class AzureDevOps:
    def __init__(self, session: aiohttp.ClientSession, config: Config):
        self.session = session
        self._auth = aiohttp.BasicAuth("", config.AZURE_DEVOPS_PAT)
        self._headers = {"Accept": "application/json"}
        self.config = config

    def get_project_url(self, project: str) -> str:
        return f"{self.config.AZURE_API_URL}/{self.config.AZURE_ORGANIZATION}/{project}/_apis"

    def get_secure_files_url(self, project: str, file_id: str | None = None) -> str:
        url = f"{self.get_project_url(project)}/distributedtask/securefiles"
        if file_id is not None:
            url += f"/{file_id}"
        return url

    def get_pipelines_url(self, project: str, pipeline_id: int | None = None) -> str:
        url = f"{self.get_project_url(project)}/pipelines"
        if pipeline_id is not None:
            url += f"/{pipeline_id}"
        return url

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error: type[StageError],
        accepted: tuple[int, ...],
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> ApiResponse:
        if method != "GET" and self.config.STERILE:
            logger.debug("Sterile mode: skipping %s %s", method, url)
            return ApiResponse(status=accepted[0], sterile=True)

        params = {"api-version": self.config.AZURE_API_VERSION, **(params or {})}
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                auth=self._auth,
                headers={**self._headers, **(headers or {})},
                **kwargs,
            ) as resp:
                metrics.azure_api_calls_total.labels(method, str(resp.status)).inc()
                if resp.status not in accepted:
                    text = await resp.text()
                    logger.debug(
                        "%s %s returned %d: %s", method, url, resp.status, text
                    )
                    raise error(
                        f"{method} {url} returned status {resp.status}",
                        status_code=resp.status,
                    )
                data = None
                if 200 <= resp.status < 300:
                    data = await resp.json(content_type=None)
                return ApiResponse(
                    status=resp.status,
                    data=data,
                    continuation_token=resp.headers.get("x-ms-continuationtoken"),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise error(f"{method} {url} failed: {e!r}") from e

    async def get_project(self, project: str) -> dict[str, Any]:
        url = f"{self.config.AZURE_API_URL}/{self.config.AZURE_ORGANIZATION}/_apis/projects/{project}"
        resp = await self._request("GET", url, error=StageError, accepted=(200,))
        return resp.data

    async def list_secure_files(self, project: str) -> list[SecureFile]:
        resp = await self._request(
            "GET",
            self.get_secure_files_url(project),
            error=ArtifactListError,
            accepted=(200,),
        )
        try:
            files = SecureFileList.model_validate(resp.data).value
        except ValidationError as e:
            raise ArtifactListError(
                f"Unexpected secure file listing for {project}: {e}",
                status_code=resp.status,
            ) from e
        logger.debug("Project %s has %d secure files", project, len(files))
        return files

    async def delete_secure_file(self, project: str, file_id: str) -> ApiResponse:
        # 404 means the file is already gone, which is what we want
        return await self._request(
            "DELETE",
            self.get_secure_files_url(project, file_id),
            error=ArtifactDeleteError,
            accepted=(204, 200, 404),
        )

    async def upload_secure_file(
        self, project: str, name: str, content: bytes
    ) -> ApiResponse:
        return await self._request(
            "POST",
            self.get_secure_files_url(project),
            error=ArtifactUploadError,
            accepted=(201, 200),
            params={"name": name},
            headers={"Content-Type": "application/octet-stream"},
            data=content,
        )

    async def list_pipelines(self, project: str) -> list[Pipeline]:
        pipelines: list[Pipeline] = []
        params: dict[str, str] = {}
        while True:
            resp = await self._request(
                "GET",
                self.get_pipelines_url(project),
                error=PipelineListError,
                accepted=(200,),
                params=params,
            )
            try:
                pipelines.extend(PipelineList.model_validate(resp.data).value)
            except ValidationError as e:
                raise PipelineListError(
                    f"Unexpected pipeline listing for {project}: {e}",
                    status_code=resp.status,
                ) from e
            if not resp.continuation_token:
                break
            params = {"continuationToken": resp.continuation_token}
        logger.debug("Project %s has %d pipelines", project, len(pipelines))
        return pipelines

    async def set_secure_file_permissions(
        self, project: str, file_id: str, pipeline_id: int
    ) -> ApiResponse:
        payload = PermissionUpdate(
            resource=ResourceReference(type="securefile", id=file_id),
            allPipelines=Authorization(authorized=False),
            pipelines=[PipelineAuthorization(id=pipeline_id, authorized=True)],
        )
        return await self._request(
            "PATCH",
            f"{self.get_project_url(project)}/pipelines/pipelinepermissions/securefile/{file_id}",
            error=PermissionGrantError,
            accepted=(200,),
            json=payload.model_dump(),
        )

    async def trigger_pipeline_run(self, project: str, pipeline_id: int) -> ApiResponse:
        return await self._request(
            "POST",
            f"{self.get_pipelines_url(project, pipeline_id)}/runs",
            error=TriggerError,
            accepted=(201, 200),
            json=RunPipelineRequest().model_dump(),
        )

    async def replace_secure_file(
        self, project: str, name: str, content: bytes
    ) -> ReplaceResult:
        """
        Make the secure file ``name`` in ``project`` hold ``content``.

        Any existing file of that name is deleted before the upload. If the
        upload then fails the file stays absent; nothing is rolled back.
        """
        existing = find_secure_file(await self.list_secure_files(project), name)

        already_absent = False
        if existing is None:
            logger.debug("No secure file named %s in %s", name, project)
        else:
            logger.debug(
                "Deleting secure file %s (%s) in %s", existing.name, existing.id, project
            )
            resp = await self.delete_secure_file(project, existing.id)
            already_absent = resp.status == 404
            if already_absent:
                logger.debug("Secure file %s was already deleted", existing.id)

        resp = await self.upload_secure_file(project, name, content)
        logger.info(
            "Uploaded secure file %s to %s (status %d)", name, project, resp.status
        )
        return ReplaceResult(
            project=project,
            name=name,
            replaced_id=existing.id if existing is not None else None,
            already_absent=already_absent,
            upload_status=resp.status,
        )

    async def find_pipeline(self, project: str, key: str) -> PipelineMatch:
        pipelines = await self.list_pipelines(project)
        match = select_pipeline(key, pipelines)
        if match.pipeline is None:
            logger.debug("No pipeline in %s matches key %r", project, key)
        else:
            logger.debug(
                "Pipeline %s (%d) matches key %r with score %d",
                match.pipeline.name,
                match.pipeline.id,
                key,
                match.score,
            )
        return match

    async def grant_pipeline_access(
        self, project: str, name: str, pipeline_id: int
    ) -> SecureFile:
        """Authorize only ``pipeline_id`` to use the secure file ``name``."""
        secure_file = find_secure_file(await self.list_secure_files(project), name)
        if secure_file is None:
            raise ArtifactLookupError(f"Secure file {name} not found in {project}")

        await self.set_secure_file_permissions(project, secure_file.id, pipeline_id)
        logger.info(
            "Granted pipeline %d access to secure file %s in %s",
            pipeline_id,
            name,
            project,
        )
        return secure_file

    async def run_pipeline(self, project: str, pipeline_id: int) -> RunResult:
        resp = await self.trigger_pipeline_run(project, pipeline_id)
        run_id = None
        if isinstance(resp.data, dict) and isinstance(resp.data.get("id"), int):
            run_id = resp.data["id"]
        logger.info(
            "Triggered pipeline %d in %s (status %d, run %s)",
            pipeline_id,
            project,
            resp.status,
            run_id,
        )
        return RunResult(
            project=project, pipeline_id=pipeline_id, status=resp.status, run_id=run_id
        )
