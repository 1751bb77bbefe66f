"""Decor8 AI provider: synchronous staging plus a declutter pre-pass."""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from roomstage.constants import room_label, style_label
from roomstage.providers.base import (
    ProviderCapabilities,
    ProviderHealth,
    ProviderId,
    StagingInput,
    StagingProvider,
    SyncStagingResult,
    reset_from_retry_after,
)

logger = logging.getLogger(__name__)

ROOM_TYPE_MAP = {
    "living-room": "livingroom",
    "bedroom-master": "bedroom",
    "bedroom-guest": "bedroom",
    "bedroom-kids": "kidsroom",
    "dining-room": "diningroom",
    "kitchen": "kitchen",
    "home-office": "homeoffice",
    "bathroom": "bathroom",
    "outdoor-patio": "patio",
}

DESIGN_STYLE_MAP = {
    "modern": "modern",
    "traditional": "traditional",
    "minimalist": "minimalist",
    "mid-century": "midcenturymodern",
    "scandinavian": "scandinavian",
    "industrial": "industrial",
    "coastal": "coastal",
    "farmhouse": "farmhouse",
    "luxury": "luxemodern",
}

NEGATIVE_PROMPT = (
    "changing walls, changing floor, changing ceiling, changing windows, changing doors, "
    "removing windows, removing doors, altering room structure, construction, renovation, "
    "different wall color, different flooring"
)


class Decor8Provider(StagingProvider):
    """Virtual staging via the Decor8 REST API.

    Decor8 takes structured room_type/design_style fields rather than a free
    text prompt, and returns hosted image URLs that are downloaded here so the
    caller always receives bytes.
    """

    provider_id = ProviderId.DECOR8
    display_name = "Decor8 AI"
    capabilities = ProviderCapabilities(
        supports_sync=True, supports_async=False, supports_declutter=True
    )

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.decor8.ai",
        timeout_seconds: float = 120.0,
        health_timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._health_timeout = health_timeout_seconds
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _input_url(staging_input: StagingInput) -> str:
        if staging_input.image_url:
            return staging_input.image_url
        encoded = base64.b64encode(staging_input.image_bytes).decode("ascii")
        return f"data:{staging_input.mime_type};base64,{encoded}"

    async def stage_sync(self, staging_input: StagingInput) -> SyncStagingResult:
        if not self._api_key:
            return SyncStagingResult.failure("DECOR8_API_KEY not configured")

        body = {
            "input_image_url": self._input_url(staging_input),
            "room_type": self.map_room_type(staging_input.room_type),
            "design_style": self.map_design_style(staging_input.furniture_style),
            "num_images": 1,
            "keep_original_dimensions": True,
            "prompt": self.build_prompt(staging_input.room_type, staging_input.furniture_style),
            "negative_prompt": self.build_negative_prompt(),
            "guidance_scale": 7.5,
            "num_inference_steps": 50,
        }
        logger.info(
            f"Decor8 staging job {staging_input.job_id}: "
            f"{body['room_type']} / {body['design_style']}"
        )
        return await self._generate("generate_designs_for_room", body, staging_input.job_id)

    async def remove_objects(self, staging_input: StagingInput) -> SyncStagingResult:
        if not self._api_key:
            return SyncStagingResult.failure("DECOR8_API_KEY not configured")

        logger.info(f"Decor8 declutter pre-pass for job {staging_input.job_id}")
        body = {"input_image_url": self._input_url(staging_input)}
        return await self._generate("remove_objects_from_room", body, staging_input.job_id)

    async def _generate(self, endpoint: str, body: Dict[str, Any], job_id: str) -> SyncStagingResult:
        try:
            async with self._client(self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/{endpoint}", json=body, headers=self._headers()
                )
                if response.status_code == 429:
                    return SyncStagingResult.failure("Decor8 rate limited", rate_limited=True)
                if not response.is_success:
                    logger.error(f"Decor8 {endpoint} error for job {job_id}: {response.status_code}")
                    return SyncStagingResult.failure(
                        f"Decor8 API error: {response.status_code} - {response.text}"
                    )

                data = response.json()
                if not isinstance(data, dict):
                    return SyncStagingResult.failure("Invalid Decor8 response: expected an object")
                image_url = self._first_image_url(data)
                if data.get("error") or not image_url:
                    return SyncStagingResult.failure(data.get("error") or "No images generated")

                image_response = await client.get(image_url)
                if not image_response.is_success:
                    return SyncStagingResult.failure(
                        f"Failed to download Decor8 image: {image_response.status_code}"
                    )
        except httpx.HTTPError as exc:
            logger.error(f"Decor8 {endpoint} request failed for job {job_id}: {exc}")
            return SyncStagingResult.failure(str(exc) or "Decor8 request failed")
        except ValueError as exc:
            return SyncStagingResult.failure(f"Invalid Decor8 response: {exc}")

        lowered = image_url.lower()
        mime_type = "image/jpeg" if (".jpg" in lowered or ".jpeg" in lowered) else "image/png"
        return SyncStagingResult(
            success=True,
            image_bytes=image_response.content,
            mime_type=mime_type,
            source_url=image_url,
        )

    @staticmethod
    def _first_image_url(data: Dict[str, Any]) -> Optional[str]:
        info = data.get("info")
        if not isinstance(info, dict):
            return None
        images = info.get("images")
        image = images[0] if isinstance(images, list) and images else info.get("image")
        if not isinstance(image, dict):
            return None
        url = image.get("url")
        return url if isinstance(url, str) else None

    async def check_health(self) -> ProviderHealth:
        if not self._api_key:
            return self._health(False, error_message="DECOR8_API_KEY not configured")

        try:
            async with self._client(self._health_timeout) as client:
                response = await client.get(
                    f"{self._base_url}/speak_friend_and_enter", headers=self._headers()
                )
        except httpx.HTTPError as exc:
            return self._health(False, error_message=str(exc) or "Decor8 unreachable")

        if response.status_code == 429:
            return self._health(
                False,
                rate_limited=True,
                reset_at=reset_from_retry_after(response.headers.get("Retry-After")),
                error_message="Rate limited",
            )
        if response.is_success:
            return self._health(True)
        return self._health(False, error_message=f"HTTP {response.status_code}")

    def estimated_processing_time_seconds(self) -> float:
        return 15.0

    def build_prompt(self, room_type: str, furniture_style: str) -> str:
        room = room_label(room_type)
        style = style_label(furniture_style)
        return (
            f"Add {style} style furniture to this empty {room}. Professional real estate "
            "virtual staging. Only add furniture and decor, preserve all existing room features."
        )

    def build_negative_prompt(self) -> str:
        return NEGATIVE_PROMPT

    @staticmethod
    def map_room_type(room_type: str) -> str:
        return ROOM_TYPE_MAP.get(room_type, "livingroom")

    @staticmethod
    def map_design_style(style: str) -> str:
        return DESIGN_STYLE_MAP.get(style, "modern")
