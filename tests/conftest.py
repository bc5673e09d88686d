import pytest
import aiohttp
from unittest.mock import MagicMock
from sanic import Sanic
import pytest_asyncio
from sanic_testing import TestManager
from sanic.log import logger

from env_relay.azure import AzureDevOps
from env_relay.azure.models import ApiResponse, Pipeline, SecureFile
from env_relay.config import Config
from env_relay.exceptions import ArtifactUploadError


@pytest.fixture
def config():
    config = Config(
        WEBHOOK_SECRET="abc",
        GITHUB_TOKEN="abc",
        GITHUB_API_URL="https://api.github.com",
        GITHUB_REF="main",
        AZURE_ORGANIZATION="test-org",
        AZURE_DEFAULT_PROJECT="default-project",
        AZURE_DEVOPS_PAT="abc",
        AZURE_API_URL="https://azure.test",
        AZURE_API_VERSION="7.1-preview.1",
        PROJECT_RULES={"frontend_": "proj-a", "api_": "proj-b"},
        INCLUDE_ADDED_FILES=False,
        HTTP_TIMEOUT=30,
        OVERRIDE_LOGGING="DEBUG",
        STERILE=False,
    )

    logger.setLevel(config.OVERRIDE_LOGGING)

    return config


@pytest.fixture(scope="function")
def app(monkeypatch, config) -> Sanic:
    """Create a Sanic app for testing."""
    from env_relay.web import create_app

    app = create_app(config=config)
    TestManager(app)
    return app


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as session:
        yield session


class InMemoryAzure(AzureDevOps):
    """
    AzureDevOps whose REST calls hit an in-memory platform.

    The secure file logic above the REST layer runs unchanged. Every REST call
    is appended to ``calls`` so tests can check ordering.
    """

    def __init__(self, config: Config):
        super().__init__(session=MagicMock(), config=config)
        self.secure_files: dict[str, dict[str, tuple[str, bytes]]] = {}
        self.pipelines: dict[str, list[Pipeline]] = {}
        self.permissions: dict[str, dict] = {}
        self.runs: list[tuple[str, int]] = []
        self.calls: list[tuple] = []
        self._next_id = 0

    def add_secure_file(self, project: str, name: str, content: bytes) -> str:
        self._next_id += 1
        file_id = f"file-{self._next_id}"
        self.secure_files.setdefault(project, {})[file_id] = (name, content)
        return file_id

    def contents(self, project: str) -> dict[str, bytes]:
        return {name: content for name, content in self.secure_files.get(project, {}).values()}

    async def list_secure_files(self, project):
        self.calls.append(("list_secure_files", project))
        return [
            SecureFile(id=file_id, name=name)
            for file_id, (name, _) in self.secure_files.get(project, {}).items()
        ]

    async def delete_secure_file(self, project, file_id):
        self.calls.append(("delete_secure_file", project, file_id))
        if self.secure_files.get(project, {}).pop(file_id, None) is None:
            return ApiResponse(status=404)
        return ApiResponse(status=204)

    async def upload_secure_file(self, project, name, content):
        self.calls.append(("upload_secure_file", project, name))
        if name.casefold() in (n.casefold() for n in self.contents(project)):
            raise ArtifactUploadError(f"{name} already exists", status_code=400)
        file_id = self.add_secure_file(project, name, content)
        return ApiResponse(status=201, data={"id": file_id, "name": name})

    async def list_pipelines(self, project):
        self.calls.append(("list_pipelines", project))
        return list(self.pipelines.get(project, []))

    async def set_secure_file_permissions(self, project, file_id, pipeline_id):
        self.calls.append(("set_secure_file_permissions", project, file_id, pipeline_id))
        self.permissions[file_id] = {
            "allPipelines": False,
            "pipelines": {pipeline_id: True},
        }
        return ApiResponse(status=200)

    async def trigger_pipeline_run(self, project, pipeline_id):
        self.calls.append(("trigger_pipeline_run", project, pipeline_id))
        self.runs.append((project, pipeline_id))
        return ApiResponse(status=200, data={"id": 1000 + len(self.runs)})


@pytest.fixture
def azure(config):
    return InMemoryAzure(config)
