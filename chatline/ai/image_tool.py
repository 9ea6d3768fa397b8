"""Image generation tool: generate with fal, host on Imgur, return the URL.

Uses a separate httpx client from ModelClient (no provider auth headers);
each request carries its own credentials.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

import httpx

from chatline.ai.tools import ToolDispatcher
from chatline.config import Settings

logger = logging.getLogger(__name__)

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "16:10", "10:16", "21:9", "9:21")
DEFAULT_ASPECT_RATIO = "16:9"

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")
_LONG_SIDE = 1024


class ImageGenerationError(RuntimeError):
    """Image generation or upload failed."""


def buffer_to_base64(data: bytes) -> str:
    """Encode image bytes as a PNG data URL."""
    return f"data:image/png;base64,{base64.b64encode(data).decode()}"


def image_size(aspect_ratio: str) -> dict[str, int]:
    """Pixel size for an aspect ratio, long side 1024, multiples of 8."""
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
    w, h = (int(x) for x in aspect_ratio.split(":"))
    scale = _LONG_SIDE / max(w, h)
    return {
        "width": max(8, round(w * scale / 8) * 8),
        "height": max(8, round(h * scale / 8) * 8),
    }


class ImageGenerator:
    """Generates an image from a prompt and uploads it for a public link."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client

    async def generate(self, prompt: str, aspect_ratio: str = DEFAULT_ASPECT_RATIO) -> bytes:
        """Run the image model and return the raw image bytes."""
        if not self._settings.fal_key:
            raise ImageGenerationError("FAL_KEY not set in environment variables")

        response = await self._http.post(
            f"{self._settings.fal_base_url}/{self._settings.image_model}",
            json={
                "prompt": prompt,
                "image_size": image_size(aspect_ratio),
                "num_images": 1,
            },
            headers={"Authorization": f"Key {self._settings.fal_key}"},
            timeout=60,
        )
        if response.status_code != 200:
            raise ImageGenerationError(f"Image generation failed (HTTP {response.status_code})")

        images = response.json().get("images") or []
        if not images or not images[0].get("url"):
            raise ImageGenerationError("Image generation returned no image")

        url = images[0]["url"]
        if url.startswith("data:"):
            return base64.b64decode(_DATA_URL_PREFIX.sub("", url))

        download = await self._http.get(url, timeout=30)
        if download.status_code != 200:
            raise ImageGenerationError(f"Image download failed (HTTP {download.status_code})")
        return download.content

    async def upload(self, image: bytes, prompt: str) -> str:
        """Upload image bytes to Imgur and return the public link."""
        client_id = self._settings.imgur_client_id
        if not client_id:
            raise ImageGenerationError("IMGUR_CLIENT_ID not set in environment variables")

        # Imgur wants the raw base64 payload without the data URL prefix
        payload = _DATA_URL_PREFIX.sub("", buffer_to_base64(image))

        response = await self._http.post(
            self._settings.imgur_upload_url,
            data={
                "image": payload,
                "type": "base64",
                "title": "Simple upload",
                "description": f"prompt: {prompt}",
            },
            headers={"Authorization": f"Client-ID {client_id}"},
            timeout=30,
        )
        if response.status_code != 200:
            raise ImageGenerationError(f"Image upload failed (HTTP {response.status_code})")

        link = (response.json().get("data") or {}).get("link")
        if not link:
            raise ImageGenerationError("Image upload returned no link")
        return link

    async def generate_image(self, prompt: str, aspect_ratio: str = DEFAULT_ASPECT_RATIO) -> dict[str, Any]:
        """Tool entry point: returns ``{"imageUrl": <link>}``."""
        image = await self.generate(prompt, aspect_ratio)
        link = await self.upload(image, prompt)
        logger.info("Generated image (%s, %d bytes): %s", aspect_ratio, len(image), link)
        return {"imageUrl": link}


_GENERATE_IMAGE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Generates an image, with a given prompt, and resolution. This returns a url.",
    "properties": {
        "prompt": {
            "type": "string",
            "description": "This is the prompt the image generation ai uses, a diffusion model optimized prompt",
        },
        "aspect_ratio": {
            "type": "string",
            "description": "This is the resolution the image generation ai uses",
            "enum": list(ASPECT_RATIOS),
            "default": DEFAULT_ASPECT_RATIO,
        },
    },
    "required": ["prompt"],
}


def register_image_tool(
    dispatcher: ToolDispatcher,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> ImageGenerator:
    """Register ``generate_image`` with the dispatcher."""
    generator = ImageGenerator(settings, http_client)

    async def _generate_image(prompt: str, aspect_ratio: str = DEFAULT_ASPECT_RATIO) -> dict[str, Any]:
        return await generator.generate_image(prompt, aspect_ratio)

    dispatcher.register("generate_image", _generate_image, _GENERATE_IMAGE_SCHEMA)
    return generator
