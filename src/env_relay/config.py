from typing import Literal

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sanic.log import logger

from env_relay.exceptions import ConfigError


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Blank secret means every webhook is rejected
    WEBHOOK_SECRET: str = ""

    GITHUB_TOKEN: str
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_REF: str = "main"

    AZURE_ORGANIZATION: str
    AZURE_DEFAULT_PROJECT: str
    AZURE_DEVOPS_PAT: str
    AZURE_API_URL: str = "https://dev.azure.com"
    AZURE_API_VERSION: str = "7.1-preview.1"

    # Ordered: the first prefix matching a file name wins
    PROJECT_RULES: dict[str, str] = {}

    INCLUDE_ADDED_FILES: bool = False

    HTTP_TIMEOUT: float = 30.0

    OVERRIDE_LOGGING: Literal[
        "CRITICAL",
        "FATAL",
        "ERROR",
        "WARNING",
        "WARN",
        "INFO",
        "DEBUG",
        "NOTSET",
    ] = "INFO"

    STERILE: bool = False

    @field_validator(
        "GITHUB_TOKEN",
        "AZURE_ORGANIZATION",
        "AZURE_DEFAULT_PROJECT",
        "AZURE_DEVOPS_PAT",
    )
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("GITHUB_API_URL", "AZURE_API_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def print_config(self):
        """Print configuration values with sensitive attributes masked"""
        sensitive_attrs = {
            "WEBHOOK_SECRET",
            "GITHUB_TOKEN",
            "AZURE_DEVOPS_PAT",
        }

        logger.info("=== Env Relay Configuration ===")
        for field_name, field_value in self.model_dump().items():
            if field_name in sensitive_attrs:
                logger.info(f"{field_name}: ***")
            else:
                logger.info(f"{field_name}: {field_value}")
        logger.info("================================")


def load_config(**overrides) -> Config:
    """Build the configuration from the environment, failing with ConfigError."""
    try:
        return Config(**overrides)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) for error in e.errors()
        )
        raise ConfigError(f"Invalid or missing configuration: {fields}") from e
