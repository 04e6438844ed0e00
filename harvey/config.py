from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class CacheTTLSettings(BaseModel):
    appointment: float = 5 * 60
    appointment_lists: float = 3 * 60
    consultation: float = 10 * 60
    consultation_lists: float = 5 * 60
    transcription: float = 30 * 60
    summaries: float = 30 * 60
    profile: float = 10 * 60


class CacheSettings(BaseModel):
    namespace: str = "app_cache"
    max_entries: int = Field(default=100, ge=1)
    purge_fraction: float = Field(default=0.2, gt=0, le=1)
    default_ttl_seconds: float = Field(default=5 * 60, gt=0)
    ttl: CacheTTLSettings = CacheTTLSettings()


class SharingSettings(BaseModel):
    expiry_days: float = Field(default=3, gt=0)
    token_bytes: int = Field(default=32, ge=16)
    base_url: str = "http://localhost:5173"
    path_template: str = "/doctor-review/{hash}"

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class StorageSettings(BaseModel):
    database_path: Path = Path("./data/harvey.sqlite3")

    @field_validator("database_path", mode="before")
    @classmethod
    def _expand_database(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class Settings(BaseModel):
    cache: CacheSettings = CacheSettings()
    sharing: SharingSettings = SharingSettings()
    storage: StorageSettings = StorageSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        return cls.model_validate(raw)


def find_config(explicit_path: Optional[Path]) -> Optional[Path]:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "harvey.yaml", cwd / "harvey.yml", cwd / "config.yaml"):
        if candidate.exists():
            return candidate
    return None


def load_settings(explicit_path: Optional[Path] = None) -> Settings:
    path = find_config(explicit_path)
    if path is None:
        return Settings()
    return Settings.load(path)
