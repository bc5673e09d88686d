from typing import Mapping
import contextlib
import functools
import json

import aiohttp
import cachetools
from aiolimiter import AsyncLimiter
from gidgethub.sansio import Event as GitHubEvent
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sanic import Sanic, response
from sanic.log import logger

from env_relay import metrics
from env_relay.azure import AzureDevOps
from env_relay.config import Config, load_config
from env_relay.exceptions import AuthError, MalformedPayloadError
from env_relay.github.models import PushEvent
from env_relay.github.router import router as github_router
from env_relay.signature import Signature
import env_relay.github.utils as github_utils


def create_session(config: Config) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT)
    )


def with_session(func):
    @functools.wraps(func)
    async def wrapper(
        *args, app: Sanic, session: aiohttp.ClientSession | None = None, **kwargs
    ):
        async with contextlib.AsyncExitStack() as stack:
            if session is None:
                session = await stack.enter_async_context(
                    create_session(app.ctx.config)
                )
            return await func(*args, app=app, session=session, **kwargs)

    return wrapper


def parse_webhook(headers: Mapping[str, str], body: bytes, secret: str) -> GitHubEvent:
    """
    Authenticate and decode a GitHub webhook delivery.

    Nothing in the body is looked at before the signature checks out.
    Raises AuthError or MalformedPayloadError.
    """
    if not Signature(secret).verify(body, headers.get("X-Hub-Signature-256")):
        raise AuthError("Webhook signature could not be verified")

    event_type = headers.get("X-GitHub-Event", "push")

    try:
        data = json.loads(body)
    except ValueError as e:
        raise MalformedPayloadError(f"Webhook body is not valid JSON: {e}") from e

    if event_type == "push":
        PushEvent.parse(data)

    return GitHubEvent(
        data, event=event_type, delivery_id=headers.get("X-GitHub-Delivery", "")
    )


@with_session
async def handle_github_webhook(
    event: GitHubEvent, *, app: Sanic, session: aiohttp.ClientSession
):
    config: Config = app.ctx.config

    gh = github_utils.client_for_token(session, config, cache=app.ctx.cache)
    azure = AzureDevOps(session=session, config=config)

    logger.debug("Dispatching event %s", event.event)
    await github_router.dispatch(event, gh=gh, azure=azure, config=config)


def create_app(config: Config | None = None):
    if config is None:
        config = load_config()

    app = Sanic("env-relay")
    app.ctx.config = config
    logger.setLevel(config.OVERRIDE_LOGGING)

    app.ctx.cache = cachetools.LRUCache(maxsize=500)

    limiter = AsyncLimiter(10)

    @app.listener("before_server_start")
    async def init(app, loop):
        config.print_config()
        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = create_session(config)

    @app.listener("after_server_stop")
    async def close(app, loop):
        logger.debug("Closing aiohttp session")
        await app.ctx.aiohttp_session.close()

    @app.route("/")
    async def index(request):
        logger.debug("status check")
        return response.text("ok")

    @app.route("/health")
    async def health(request):
        if not limiter.has_capacity():
            return response.text("Rate limited", status=429)
        await limiter.acquire()

        session = app.ctx.aiohttp_session

        github_ok = False
        azure_ok = False

        logger.info("Checking health")
        try:
            gh = github_utils.client_for_token(session, config)
            await gh.getitem("/rate_limit")
            logger.info("GitHub ok")
            github_ok = True
        except Exception as e:
            logger.error("GitHub rate limit query failed: %s", e)
            logger.exception(e)

        try:
            azure = AzureDevOps(session=session, config=config)
            await azure.get_project(config.AZURE_DEFAULT_PROJECT)
            logger.info("Azure DevOps ok")
            azure_ok = True
        except Exception as e:
            logger.error("Azure DevOps project info failed: %s", e)
            logger.exception(e)

        metrics.health_check_status.labels("github").set(int(github_ok))
        metrics.health_check_status.labels("azure").set(int(azure_ok))

        status = 200 if github_ok and azure_ok else 500
        github_str = "ok" if github_ok else "not ok"
        azure_str = "ok" if azure_ok else "not ok"
        text = f"GitHub: {github_str}, Azure DevOps: {azure_str}"
        return response.text(text, status=status)

    @app.route("/metrics")
    async def prometheus_metrics(request):
        return response.raw(generate_latest(), content_type=CONTENT_TYPE_LATEST)

    @app.route("/webhook", methods=["POST"])
    async def webhook(request):
        try:
            event = parse_webhook(request.headers, request.body, config.WEBHOOK_SECRET)
        except AuthError as e:
            logger.warning("Rejecting webhook: %s", e)
            metrics.webhook_rejections_total.labels("unauthorized").inc()
            return response.text("Invalid signature", status=401)
        except MalformedPayloadError as e:
            logger.warning("Rejecting webhook: %s", e)
            metrics.webhook_rejections_total.labels("malformed").inc()
            return response.text("Invalid JSON payload", status=400)

        logger.debug("Webhook received for %s event", event.event)
        # Only authenticated deliveries get a label of their own
        metrics.webhooks_received_total.labels(event.event).inc()

        app.add_task(handle_github_webhook(event, app=app))

        return response.text("Webhook processed")

    return app
