from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DATA_DIR = Path(__file__).parent / "data"


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _env_path(key: str, default: Path) -> Path:
    override = _env(key)
    return Path(override).expanduser() if override else default


class Settings(BaseModel):
    store_backend: str = Field(default_factory=lambda: _env("DEALFLOW_STORE", "sql").lower())
    database_path: Path = Field(default_factory=lambda: _env_path("DEALFLOW_DB_PATH", DATA_DIR / "dealflow.db"))
    json_path: Path = Field(default_factory=lambda: _env_path("DEALFLOW_JSON_PATH", DATA_DIR / "deals.json"))
    seed_demo: bool = Field(default_factory=lambda: _env("DEALFLOW_SEED_DEMO").lower() in ("1", "true", "yes"))

    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL"))

    host: str = Field(default_factory=lambda: _env("DEALFLOW_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(_env("DEALFLOW_PORT", "8001")))

    @field_validator("store_backend")
    @classmethod
    def backend_must_be_known(cls, v: str) -> str:
        if v not in ("sql", "json"):
            raise ValueError("DEALFLOW_STORE must be 'sql' or 'json'")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
