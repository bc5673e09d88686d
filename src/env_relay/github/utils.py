import asyncio
import base64
import binascii

import aiohttp
import cachetools
import gidgethub
from gidgethub import aiohttp as gh_aiohttp
from gidgethub.abc import GitHubAPI
from sanic.log import logger

from env_relay import metrics
from env_relay.azure import AzureDevOps
from env_relay.azure.utils import match_key
from env_relay.config import Config
from env_relay.exceptions import FetchError, StageError
from env_relay.github.models import DispatchReport, FileOutcome, PushEvent, Stage
from env_relay.utils import artifact_name, resolve_project


def client_for_token(
    session: aiohttp.ClientSession,
    config: Config,
    cache: cachetools.Cache | None = None,
) -> GitHubAPI:
    return gh_aiohttp.GitHubAPI(
        session,
        "env-relay",
        oauth_token=config.GITHUB_TOKEN,
        cache=cache,
        base_url=config.GITHUB_API_URL,
    )


async def fetch_file(gh: GitHubAPI, repo_name: str, path: str, ref: str) -> bytes:
    """
    Retrieve the decoded content of ``path`` in ``repo_name`` at ``ref``.

    Every failure (missing path, HTTP error, timeout, undecodable content)
    surfaces as FetchError.
    """
    logger.debug("Fetching %s from %s at %s", path, repo_name, ref)
    try:
        item = await gh.getitem(
            "/repos/{+repo}/contents/{+path}{?ref}",
            {"repo": repo_name, "path": path, "ref": ref},
        )
    except gidgethub.HTTPException as e:
        raise FetchError(
            f"Could not fetch {path} from {repo_name}@{ref}: {e}",
            status_code=int(e.status_code),
        ) from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise FetchError(f"Could not fetch {path} from {repo_name}@{ref}: {e!r}") from e

    if not isinstance(item, dict) or item.get("type") != "file":
        raise FetchError(f"{path} in {repo_name}@{ref} is not a file")

    if item.get("encoding") != "base64":
        raise FetchError(
            f"{path} in {repo_name}@{ref} has unsupported encoding {item.get('encoding')!r}"
        )

    try:
        return base64.b64decode(item["content"])
    except (KeyError, TypeError, binascii.Error) as e:
        raise FetchError(f"Could not decode {path} from {repo_name}@{ref}") from e


async def sync_file(
    gh: GitHubAPI,
    azure: AzureDevOps,
    repo_name: str,
    path: str,
    ref: str,
    config: Config,
) -> FileOutcome:
    name = artifact_name(path)
    project = resolve_project(name, config.PROJECT_RULES, config.AZURE_DEFAULT_PROJECT)
    logger.debug("File %s resolves to project %s", path, project)

    outcome = FileOutcome(path=path, name=name, project=project)

    stage = Stage.fetch
    try:
        with metrics.track_stage(stage):
            content = await fetch_file(gh, repo_name, path, ref)
        logger.info("Fetched %s (%d bytes)", path, len(content))

        stage = Stage.replace
        with metrics.track_stage(stage):
            result = await azure.replace_secure_file(project, name, content)
        outcome.replaced = result.replaced_id is not None

        stage = Stage.match
        with metrics.track_stage(stage):
            match = await azure.find_pipeline(project, match_key(name))
        outcome.score = match.score
        if match.pipeline is None:
            logger.info("No pipeline matches %s in %s, not triggering", name, project)
            metrics.files_processed_total.labels(project, "synced").inc()
            return outcome
        outcome.pipeline_id = match.pipeline.id

        stage = Stage.grant
        with metrics.track_stage(stage):
            await azure.grant_pipeline_access(project, name, match.pipeline.id)

        stage = Stage.trigger
        with metrics.track_stage(stage):
            run = await azure.run_pipeline(project, match.pipeline.id)
        outcome.run_id = run.run_id
    except StageError as e:
        logger.error(
            "Stage %s failed for %s (project %s, status %s): %s",
            stage,
            path,
            project,
            e.status_code,
            e,
        )
        outcome.failed_stage = stage
        outcome.error = str(e)
        metrics.files_processed_total.labels(project, "failed").inc()
        return outcome

    metrics.pipelines_triggered_total.labels(project).inc()
    metrics.files_processed_total.labels(project, "triggered").inc()
    return outcome


async def handle_push(
    gh: GitHubAPI,
    event: PushEvent,
    azure: AzureDevOps,
    config: Config,
) -> DispatchReport:
    repo_name = event.repository.full_name
    ref = event.after or config.GITHUB_REF
    files = event.changed_files(include_added=config.INCLUDE_ADDED_FILES)

    report = DispatchReport(repository=repo_name, ref=ref)

    if not files:
        logger.info("Push to %s changed no files, nothing to do", repo_name)
        return report

    logger.info("Push to %s at %s changed %d files", repo_name, ref, len(files))

    # Sequential in payload order; one file failing never stops the others
    for path in files:
        report.outcomes.append(await sync_file(gh, azure, repo_name, path, ref, config))

    logger.info(
        "Dispatch for %s finished: %d files, %d failed",
        repo_name,
        len(report.outcomes),
        len(report.failed),
    )
    return report
