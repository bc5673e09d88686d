import pytest

from env_relay.config import Config, load_config
from env_relay.exceptions import ConfigError


@pytest.fixture
def environment(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("AZURE_ORGANIZATION", "org")
    monkeypatch.setenv("AZURE_DEFAULT_PROJECT", "default")
    monkeypatch.setenv("AZURE_DEVOPS_PAT", "pat")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("PROJECT_RULES", raising=False)


def test_load_config_from_environment(environment, monkeypatch):
    monkeypatch.setenv(
        "PROJECT_RULES", '{"zeta_": "proj-z", "alpha_": "proj-a", "api_": "proj-b"}'
    )
    monkeypatch.setenv("AZURE_API_URL", "https://dev.azure.com/")

    config = load_config()

    assert config.GITHUB_TOKEN == "gh-token"
    assert config.AZURE_API_URL == "https://dev.azure.com"
    assert config.HTTP_TIMEOUT == 30
    assert config.GITHUB_REF == "main"
    # Declared order is kept
    assert list(config.PROJECT_RULES) == ["zeta_", "alpha_", "api_"]


def test_unset_webhook_secret_defaults_to_blank(environment):
    assert load_config().WEBHOOK_SECRET == ""


def test_missing_credential_is_config_error(environment, monkeypatch):
    monkeypatch.delenv("AZURE_DEVOPS_PAT")

    with pytest.raises(ConfigError, match="AZURE_DEVOPS_PAT"):
        load_config()


def test_blank_credential_is_config_error(environment, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "   ")

    with pytest.raises(ConfigError, match="GITHUB_TOKEN"):
        load_config()


def test_print_config_masks_credentials(config: Config, monkeypatch):
    lines = []
    monkeypatch.setattr("env_relay.config.logger.info", lambda msg: lines.append(msg))

    config.print_config()

    assert "GITHUB_TOKEN: ***" in lines
    assert "AZURE_DEVOPS_PAT: ***" in lines
    assert "WEBHOOK_SECRET: ***" in lines
    assert "AZURE_ORGANIZATION: test-org" in lines
