"""Image key acquisition for image replies.

Two strategies, chosen by ``IMAGE_MODE``:

- retrieval: GET a configured URL that already returns ``{code, data: {image_key}}``.
- reupload: GET raw image bytes from a source URL, then POST them as
  ``application/octet-stream`` with a bearer token to an upload endpoint
  returning the same envelope.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx
from pydantic import ValidationError

from src.config import ImageMode, RelayConfig
from src.models import ImageUploadEnvelope

logger = logging.getLogger(__name__)


class ImageUploadError(Exception):
    """Raised when no image key could be obtained."""


def parse_image_key(resp: httpx.Response) -> str:
    """Extract ``data.image_key`` from an upload envelope or raise."""
    try:
        envelope = ImageUploadEnvelope.model_validate_json(resp.content)
    except ValidationError as exc:
        raise ImageUploadError(
            f"Unexpected upload response (HTTP {resp.status_code})",
        ) from exc
    if envelope.code != 0 or not envelope.data or not envelope.data.image_key:
        raise ImageUploadError(
            f"Image upload failed: code={envelope.code} msg={envelope.msg}",
        )
    return envelope.data.image_key


class ImageUploader(ABC):
    """Obtains an image key the messaging platform can send."""

    # Whether the image reply precedes the text answer
    before_answer: bool = False

    @abstractmethod
    async def upload(self) -> str:
        """Return an image key or raise ImageUploadError."""


class RetrievalUrlUploader(ImageUploader):
    before_answer = True

    def __init__(self, retrieval_url: str) -> None:
        self._retrieval_url = retrieval_url

    async def upload(self) -> str:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(self._retrieval_url)
        except httpx.HTTPError as exc:
            raise ImageUploadError(f"Image retrieval unreachable: {exc}") from exc
        image_key = parse_image_key(resp)
        logger.info("Image uploaded successfully, image_key: %s", image_key)
        return image_key


class FetchAndReuploadUploader(ImageUploader):
    def __init__(self, source_url: str, upload_url: str, token: str) -> None:
        self._source_url = source_url
        self._upload_url = upload_url
        self._token = token

    async def upload(self) -> str:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/octet-stream",
        }
        try:
            async with httpx.AsyncClient() as client:
                source = await client.get(self._source_url)
                if source.status_code >= 400:
                    raise ImageUploadError(
                        f"Image fetch failed (HTTP {source.status_code})",
                    )
                resp = await client.post(
                    self._upload_url, content=source.content, headers=headers,
                )
        except httpx.HTTPError as exc:
            raise ImageUploadError(f"Image upload unreachable: {exc}") from exc
        image_key = parse_image_key(resp)
        logger.info("Image re-uploaded, image_key: %s", image_key)
        return image_key


def build_image_uploader(config: RelayConfig) -> ImageUploader | None:
    """Return the uploader for ``config.image_mode``; None when images are off."""
    config.validate_image_settings()
    if config.image_mode is ImageMode.RETRIEVAL:
        return RetrievalUrlUploader(config.image_retrieval_url or "")
    if config.image_mode is ImageMode.REUPLOAD:
        return FetchAndReuploadUploader(
            config.image_source_url or "",
            config.image_upload_url or "",
            config.image_upload_token or "",
        )
    return None
