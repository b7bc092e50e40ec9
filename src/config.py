"""Environment-driven configuration for the relay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

APP_ID_PREFIX = "cli_"


class ConfigError(Exception):
    """Raised when the environment describes an unusable configuration."""


class ImageMode(str, Enum):
    OFF = "off"
    RETRIEVAL = "retrieval"  # fixed retrieval URL returns an image key
    REUPLOAD = "reupload"  # fetch bytes, re-upload with a bearer token


@dataclass(frozen=True)
class ConfigCheck:
    code: int
    message: str

    def as_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class RelayConfig:
    app_id: str = ""
    app_secret: str = ""
    flowise_api_url: str = ""
    lark_api_base: str = "https://open.larksuite.com"
    host: str = "0.0.0.0"  # nosec B104
    port: int = 3000
    image_mode: ImageMode = ImageMode.OFF
    image_retrieval_url: str | None = None
    image_source_url: str | None = None
    image_upload_url: str | None = None
    image_upload_token: str | None = None
    dedup_window_seconds: int = 86400
    audit_log_path: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Build config from environment variables and validate image settings."""
        raw_mode = os.environ.get("IMAGE_MODE", ImageMode.OFF.value).strip().lower()
        try:
            image_mode = ImageMode(raw_mode)
        except ValueError as exc:
            raise ConfigError(f"Unknown IMAGE_MODE: {raw_mode!r}") from exc

        try:
            port = int(os.environ.get("PORT", "3000"))
            dedup_window = int(os.environ.get("DEDUP_WINDOW_SECONDS", "86400"))
        except ValueError as exc:
            raise ConfigError(f"Invalid integer setting: {exc}") from exc

        config = cls(
            app_id=os.environ.get("LARK_APP_ID", ""),
            app_secret=os.environ.get("LARK_APP_SECRET", ""),
            flowise_api_url=os.environ.get("FLOWISE_API_URL", ""),
            lark_api_base=os.environ.get("LARK_API_BASE", "https://open.larksuite.com"),
            host=os.environ.get("HOST", "0.0.0.0"),  # nosec B104
            port=port,
            image_mode=image_mode,
            image_retrieval_url=os.environ.get("IMAGE_RETRIEVAL_URL") or None,
            image_source_url=os.environ.get("IMAGE_SOURCE_URL") or None,
            image_upload_url=os.environ.get("IMAGE_UPLOAD_URL") or None,
            image_upload_token=os.environ.get("IMAGE_UPLOAD_TOKEN") or None,
            dedup_window_seconds=dedup_window,
            audit_log_path=os.environ.get("AUDIT_LOG_PATH") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
        config.validate_image_settings()
        return config

    def validate_image_settings(self) -> None:
        if self.image_mode is ImageMode.RETRIEVAL and not self.image_retrieval_url:
            raise ConfigError("IMAGE_MODE=retrieval requires IMAGE_RETRIEVAL_URL")
        if self.image_mode is ImageMode.REUPLOAD:
            missing = [
                name
                for name, value in (
                    ("IMAGE_SOURCE_URL", self.image_source_url),
                    ("IMAGE_UPLOAD_URL", self.image_upload_url),
                    ("IMAGE_UPLOAD_TOKEN", self.image_upload_token),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"IMAGE_MODE=reupload requires {', '.join(missing)}"
                )

    def check_app_credentials(self) -> ConfigCheck:
        """Self-check answered to header-less webhook calls."""
        if not self.app_id or not self.app_secret:
            return ConfigCheck(code=1, message="Missing Lark App ID or Secret")
        if not self.app_id.startswith(APP_ID_PREFIX):
            return ConfigCheck(
                code=1, message=f"Lark App ID must start with '{APP_ID_PREFIX}'",
            )
        return ConfigCheck(code=0, message="✅ Lark App configuration is valid.")
