"""
GENESIS Video Generator Agent
===============================================================================
Short promotional clips using the KIE.ai VEO 3.1 API.

Features:
- KIE.ai VEO 3.1 text-to-video generation
- Async polling for generation status
- Finished clip re-hosted in the object store so the URL outlives KIE.ai

Cost:
- VEO 3.1 Fast: $0.40/8s (720p)
- VEO 3.1 Quality: $2.00/8s (1080p)

Environment: KIE_API_KEY

Author: Barrios A2I
Version: 3.0.0 (KIE.ai Integration)
===============================================================================
"""

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

from agents.base import ObjectStore, VideoGenerator, VideoOutput, filename_from_url
from agents.kie_client import KieTaskClient

logger = logging.getLogger("genesis.video_generator")


class VideoModel(str, Enum):
    """Supported video generation models via KIE.ai"""
    VEO_FAST = "veo3_fast"      # $0.40/8s, 720p
    VEO_QUALITY = "veo3"        # $2.00/8s, 1080p


# VEO renders fixed-length clips
VEO_CLIP_SECONDS = 8.0

RESOLUTIONS = {
    VideoModel.VEO_FAST: (1280, 720),
    VideoModel.VEO_QUALITY: (1920, 1080),
}

VIDEO_PROMPT = (
    "Bright, friendly 8 second promotional video for a local {category}. "
    "Show the shop and its products with gentle camera motion and warm daylight. "
    "Mood and message: {caption}"
)


def _first_result_url(task_data: Dict[str, Any]) -> Optional[str]:
    response = task_data.get("response") or {}
    urls = response.get("resultUrls") or []
    return urls[0] if urls else None


class KieVideoGenerator(VideoGenerator):
    """
    Video generator using KIE.ai VEO 3.1.

    Flow:
    1. Submit the prompt to /veo/generate
    2. Poll /veo/record-info until successFlag settles
    3. Download the clip and upload it to the object store
    """

    name = "kie_veo"

    GENERATE_PATH = "/veo/generate"
    STATUS_PATH = "/veo/record-info"

    def __init__(
        self,
        object_store: ObjectStore,
        api_key: Optional[str] = None,
        model: VideoModel = VideoModel.VEO_FAST,
        aspect_ratio: str = "16:9",
        task_client: Optional[KieTaskClient] = None
    ):
        self.object_store = object_store
        self.model = model
        self.aspect_ratio = aspect_ratio
        self.client = task_client or KieTaskClient(
            api_key or os.getenv("KIE_API_KEY"),
            poll_interval=10.0,
            max_poll_time=95.0
        )

        if self.client.is_configured:
            logger.info(f"[VideoGenerator] Initialized with KIE.ai API ({self.model.value})")
        else:
            logger.warning("[VideoGenerator] No KIE_API_KEY - calls will fail")

    def build_prompt(self, caption: str, category: str) -> str:
        return VIDEO_PROMPT.format(category=category, caption=caption)

    async def generate_video(self, caption: str, category: str) -> VideoOutput:
        payload = {
            "prompt": self.build_prompt(caption, category),
            "aspectRatio": self.aspect_ratio,
            "model": self.model.value,
            "generationType": "TEXT_2_VIDEO"
        }

        task_id = await self.client.submit(self.GENERATE_PATH, payload)
        result_url = await self.client.wait_for(self.STATUS_PATH, task_id, _first_result_url)

        video_bytes = await self.client.download(result_url)
        url = await self.object_store.store(video_bytes, "video/mp4")

        width, height = RESOLUTIONS[self.model]
        logger.info(f"[VideoGenerator] Clip ready: {len(video_bytes)} bytes -> {url}")

        return VideoOutput(
            url=url,
            duration_seconds=VEO_CLIP_SECONDS,
            format="mp4",
            size_bytes=len(video_bytes),
            filename=filename_from_url(url, "promo.mp4"),
            width_px=width,
            height_px=height,
        )


def create_video_generator(
    object_store: ObjectStore,
    api_key: Optional[str] = None
) -> KieVideoGenerator:
    """Create KieVideoGenerator instance with KIE.ai API."""
    return KieVideoGenerator(object_store, api_key=api_key)
