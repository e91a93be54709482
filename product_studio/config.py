"""
Runtime configuration read from the process environment.

Only GEMINI_API_KEY is mandatory; everything else falls back to a default when
unset or unparsable.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from product_studio.errors import MissingCredential

# Upload limits
SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_UPLOAD_MB_DEFAULT = 10

# Crop editor
CROP_FILL_DEFAULT = 0.9
ZOOM_MIN = 1.0
ZOOM_MAX = 3.0
VIEWPORT_DEFAULT = (960, 640)

# Result download
DOWNLOAD_FILENAME = "ai-photo-studio-result.png"

# Gemini
GEMINI_API_BASE_DEFAULT = "https://generativelanguage.googleapis.com/v1beta/models"
PROMPT_MODEL_DEFAULT = "gemini-2.5-flash"
IMAGE_MODEL_DEFAULT = "gemini-2.5-flash-image-preview"
GEMINI_TIMEOUT_DEFAULT = 60.0


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_viewport(name: str, default: Tuple[int, int]) -> Tuple[int, int]:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    try:
        w, h = raw.split("x", 1)
        w, h = int(w), int(h)
    except ValueError:
        return default
    if w <= 0 or h <= 0:
        return default
    return w, h


@dataclass(frozen=True)
class StudioConfig:
    api_key: str
    api_base: str = GEMINI_API_BASE_DEFAULT
    prompt_model: str = PROMPT_MODEL_DEFAULT
    image_model: str = IMAGE_MODEL_DEFAULT
    timeout: float = GEMINI_TIMEOUT_DEFAULT
    max_upload_bytes: int = MAX_UPLOAD_MB_DEFAULT * 1024 * 1024
    crop_fill: float = CROP_FILL_DEFAULT
    viewport: Tuple[int, int] = VIEWPORT_DEFAULT
    prompt_workers: int = 2
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def max_upload_mb(self) -> float:
        return self.max_upload_bytes / (1024 * 1024)

    def endpoint(self, model: str) -> str:
        return f"{self.api_base.rstrip('/')}/{model}:generateContent"

    @classmethod
    def from_env(cls, api_key: Optional[str] = None) -> "StudioConfig":
        key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY", "")
        if not key:
            raise MissingCredential("GEMINI_API_KEY environment variable is not set.")

        max_mb = max(1, _env_int("PRODUCT_STUDIO_MAX_UPLOAD_MB", MAX_UPLOAD_MB_DEFAULT))
        fill = _env_float("PRODUCT_STUDIO_CROP_FILL", CROP_FILL_DEFAULT)
        if not 0 < fill <= 1:
            fill = CROP_FILL_DEFAULT

        return cls(
            api_key=key,
            api_base=os.getenv("GEMINI_API_BASE", GEMINI_API_BASE_DEFAULT),
            prompt_model=os.getenv("GEMINI_PROMPT_MODEL", PROMPT_MODEL_DEFAULT),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", IMAGE_MODEL_DEFAULT),
            timeout=max(1.0, _env_float("GEMINI_TIMEOUT", GEMINI_TIMEOUT_DEFAULT)),
            max_upload_bytes=max_mb * 1024 * 1024,
            crop_fill=fill,
            viewport=_env_viewport("PRODUCT_STUDIO_VIEWPORT", VIEWPORT_DEFAULT),
            prompt_workers=max(1, _env_int("PRODUCT_STUDIO_PROMPT_WORKERS", 2)),
            host=os.getenv("PRODUCT_STUDIO_HOST", "127.0.0.1"),
            port=_env_int("PRODUCT_STUDIO_PORT", 8000),
        )
