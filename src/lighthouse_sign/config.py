from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from ``LIGHTHOUSE_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="LIGHTHOUSE_", case_sensitive=False)

    data_dir: Path = Field(
        Path.home() / ".lighthouse-sign",
        description="Root directory of the document store",
    )
    signing_base_url: str = Field(
        "https://app.glrecoveryservices.com/sign.html",
        description="Signing page; the signer token is appended as the URL fragment",
    )
    expiration_days: int = Field(14, ge=1, le=365, description="Days until a sent agreement expires")
    page_size: int = Field(50, ge=1, le=500, description="Agreements per list view")
    sender_display_name: str = Field("GLRS", description="Fallback sender name in emails")
    organization_name: str = Field("Guiding Light Recovery Services")
    renderer_url: Optional[str] = Field(None, description="External PDF renderer endpoint")
    renderer_timeout_s: float = Field(30.0, ge=1.0, le=300.0, description="Renderer HTTP timeout (seconds)")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
