from gidgethub.routing import Router
from gidgethub.abc import GitHubAPI
from gidgethub.sansio import Event
from sanic.log import logger

from env_relay.azure import AzureDevOps
from env_relay.config import Config
from env_relay.github.models import PushEvent
from env_relay.github.utils import handle_push

router = Router()


@router.register("push")
async def on_push(
    event: Event,
    gh: GitHubAPI,
    azure: AzureDevOps,
    config: Config,
):
    logger.debug("Received push event")
    data = PushEvent.parse(event.data)
    await handle_push(gh, data, azure=azure, config=config)


@router.register("ping")
async def on_ping(event: Event, gh: GitHubAPI, azure: AzureDevOps, config: Config):
    logger.debug("Received ping event")
