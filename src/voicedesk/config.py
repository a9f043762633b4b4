"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from .env or environment variables."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Main backend (extraction endpoints live under {api_base_url}/v1)
    api_base_url: str = "http://localhost:8080/api"
    api_token: str = ""

    # Scenario test-runner service
    qa_runner_url: str = "http://localhost:8090"

    # Extraction polling
    extraction_poll_interval_ms: int = 1000

    # HTTP
    http_timeout: float = 30.0

    # Claude API (message-intent judge)
    anthropic_api_key: str = ""
    judge_model: str = "claude-sonnet-4-20250514"

    # Local files
    scenarios_dir: str = "./scenarios"
    prompts_dir: str = "./prompts"

    # Application
    log_level: str = "INFO"

    @property
    def scenarios_path(self) -> Path:
        p = Path(self.scenarios_dir)
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def prompts_path(self) -> Path:
        return Path(self.prompts_dir)

    def has_api_token(self) -> bool:
        return bool(self.api_token)

    def has_anthropic(self) -> bool:
        return bool(self.anthropic_api_key)


def get_settings() -> Settings:
    return Settings()
