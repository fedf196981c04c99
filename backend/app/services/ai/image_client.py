"""
Image edit client (OpenAI images/edits endpoint)
"""
import base64
import binascii
import httpx
from typing import Optional
import logging

from app.config import get_settings
from app.exceptions import ThumbnailGenerationError

logger = logging.getLogger(__name__)
settings = get_settings()


def decode_data_url(data_url: str) -> bytes:
    """Raw bytes of a base64 data URL (or of a bare base64 string)"""
    payload = data_url.split(",", 1)[1] if data_url.startswith("data:") else data_url
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ThumbnailGenerationError("Video frame is not valid base64 image data")


class ImageClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.IMAGE_BASE_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout or settings.IMAGE_TIMEOUT,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def edit_image(
        self,
        source_image: bytes,
        prompt: str,
        size: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Edit source_image according to prompt.
        Returns: base64-encoded PNG
        """
        if not self.api_key:
            raise ThumbnailGenerationError("Image generation is not configured. Set OPENAI_API_KEY.")

        try:
            response = await self.client.post(
                f"{self.base_url}/images/edits",
                data={
                    "model": model or settings.IMAGE_MODEL,
                    "prompt": prompt,
                    "size": size or settings.IMAGE_SIZE,
                },
                files={"image": ("frame-0.png", source_image, "image/png")},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500] if e.response.text else ""
            logger.error(f"Image edit failed ({e.response.status_code}): {body}")
            if "safety" in body.lower():
                raise ThumbnailGenerationError(
                    "Thumbnail request was rejected by the safety system", details=body
                )
            raise ThumbnailGenerationError(
                f"Thumbnail image generation failed ({e.response.status_code})", details=body
            )
        except httpx.HTTPError as e:
            logger.error(f"Image edit request failed: {e}")
            raise ThumbnailGenerationError(f"Thumbnail image generation failed: {e}")

        try:
            items = response.json().get("data") or []
        except ValueError:
            raise ThumbnailGenerationError("Thumbnail image generation returned a non-JSON response")
        if not items:
            raise ThumbnailGenerationError("No image data returned from thumbnail generation")

        image = items[0]
        if image.get("b64_json"):
            return image["b64_json"]
        if image.get("url"):
            download = await self.client.get(image["url"])
            if download.status_code >= 400:
                raise ThumbnailGenerationError("Failed to download generated thumbnail")
            return base64.b64encode(download.content).decode()
        raise ThumbnailGenerationError("No image URL or base64 data in thumbnail response")

    async def close(self):
        await self.client.aclose()
