"""Application configuration loading utilities."""

from __future__ import annotations

import os
import pathlib
from functools import lru_cache
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR.parent / "config" / "providers.yaml"

ENCRYPTION_KEY_ENV = "ENCRYPTION_KEY"

# Vendor keys live encrypted in the database, never in the process environment.
_MISPLACED_KEY_ENVS = ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "XAI_API_KEY")


class ProviderModel(BaseModel):
    id: str
    name: str
    base_url: str
    path: str
    api_version: str | None = None
    max_tokens: int = Field(default=1024)
    models: Dict[str, Any] = Field(default_factory=dict)

    @property
    def default_model(self) -> str | None:
        value = self.models.get("default")
        return value if isinstance(value, str) and value else None


class AppConfig(BaseModel):
    providers: List[ProviderModel]
    ai_timeout_seconds: float = Field(default=60.0, gt=0)
    provider_cache_ttl_seconds: float = Field(default=60.0, ge=0)
    provider_cache_max_size: int = Field(default=100, ge=1)
    soft_failure_detection: bool = False

    def provider(self, provider_id: str) -> ProviderModel | None:
        return next((p for p in self.providers if p.id == provider_id), None)


@lru_cache(maxsize=1)
def load_config(path: pathlib.Path | None = None) -> AppConfig:
    """Load provider configuration from YAML."""
    configured = os.getenv("CRM_AI_CONFIG")
    config_path = path or (pathlib.Path(configured) if configured else DEFAULT_CONFIG_PATH)
    raw = yaml.safe_load(config_path.read_text())
    return AppConfig(**raw)


def database_url() -> str:
    configured = os.getenv("DATABASE_URL")
    if configured:
        return configured
    db_path = BASE_DIR.parent / "data" / "crm_ai.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def verify_environment() -> list[str]:
    """Return human-readable problems with the process environment (empty = fine)."""
    problems: list[str] = []

    key = os.getenv(ENCRYPTION_KEY_ENV)
    if not key:
        problems.append(f"{ENCRYPTION_KEY_ENV} missing - cannot decrypt stored API keys")
    else:
        try:
            if len(bytes.fromhex(key)) != 32:
                problems.append(f"{ENCRYPTION_KEY_ENV} must be 64 hex characters")
        except ValueError:
            problems.append(f"{ENCRYPTION_KEY_ENV} is not valid hex")

    for name in _MISPLACED_KEY_ENVS:
        if os.getenv(name):
            problems.append(
                f"WARNING: {name} is set as an env var but provider keys are read from the database"
            )
    return problems
