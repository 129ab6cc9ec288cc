"""
GENESIS Image Generator Agent
===============================================================================
Square promotional images using the KIE.ai 4o Image API.

Same submit/poll flow as the video agent; the finished image is downloaded
and re-hosted in the object store.

Environment: KIE_API_KEY

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import logging
import os
from typing import Any, Dict, Optional

from agents.base import ImageGenerator, ImageOutput, ObjectStore, filename_from_url
from agents.kie_client import KieTaskClient

logger = logging.getLogger("genesis.image_generator")

IMAGE_SIZE_PX = 1024

IMAGE_PROMPT = (
    "Eye-catching square social media poster for a local {category}. "
    "Clean composition, vivid colors, products front and center, no text overlay. "
    "Theme: {caption}"
)


def _first_result_url(task_data: Dict[str, Any]) -> Optional[str]:
    response = task_data.get("response") or {}
    urls = response.get("resultUrls") or []
    return urls[0] if urls else None


class KieImageGenerator(ImageGenerator):
    """Image generator using KIE.ai"""

    name = "kie_image"

    GENERATE_PATH = "/gpt4o-image/generate"
    STATUS_PATH = "/gpt4o-image/record-info"

    def __init__(
        self,
        object_store: ObjectStore,
        api_key: Optional[str] = None,
        task_client: Optional[KieTaskClient] = None
    ):
        self.object_store = object_store
        self.client = task_client or KieTaskClient(
            api_key or os.getenv("KIE_API_KEY"),
            poll_interval=3.0,
            max_poll_time=60.0
        )

        if not self.client.is_configured:
            logger.warning("[ImageGenerator] No KIE_API_KEY - calls will fail")

    async def generate_image(self, caption: str, category: str) -> ImageOutput:
        payload = {
            "prompt": IMAGE_PROMPT.format(category=category, caption=caption),
            "size": "1:1",
            "nVariants": 1
        }

        task_id = await self.client.submit(self.GENERATE_PATH, payload)
        result_url = await self.client.wait_for(self.STATUS_PATH, task_id, _first_result_url)

        image_bytes = await self.client.download(result_url)
        url = await self.object_store.store(image_bytes, "image/png")

        logger.info(f"[ImageGenerator] Image ready: {len(image_bytes)} bytes -> {url}")

        return ImageOutput(
            url=url,
            width_px=IMAGE_SIZE_PX,
            height_px=IMAGE_SIZE_PX,
            format="png",
            size_bytes=len(image_bytes),
            filename=filename_from_url(url, "poster.png"),
        )


def create_image_generator(
    object_store: ObjectStore,
    api_key: Optional[str] = None
) -> KieImageGenerator:
    """Create KieImageGenerator instance with KIE.ai API."""
    return KieImageGenerator(object_store, api_key=api_key)
