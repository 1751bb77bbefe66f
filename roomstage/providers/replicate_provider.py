"""Stable Diffusion + ControlNet provider on Replicate (asynchronous only).

Predictions are started with a webhook so Replicate calls back when the
prediction completes. The same prediction can also be polled by id.
"""

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from typing import Any, List, Mapping, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError

from roomstage.constants import BEDROOM_TYPES, room_label, style_label
from roomstage.providers.base import (
    AsyncStagingResult,
    PredictionState,
    ProviderCapabilities,
    ProviderHealth,
    ProviderId,
    ProviderJobStatus,
    StagingInput,
    StagingProvider,
    reset_from_retry_after,
)

logger = logging.getLogger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"

# Generation parameters
NUM_INFERENCE_STEPS = 30
GUIDANCE_SCALE = 7.5
CONTROLNET_CONDITIONING_SCALE = 0.8

# Signed webhooks older than this are rejected
WEBHOOK_TOLERANCE_SECONDS = 5 * 60


class ReplicateProvider(StagingProvider):
    """SDXL ControlNet staging through Replicate predictions."""

    provider_id = ProviderId.STABLE_DIFFUSION
    display_name = "Stable Diffusion + ControlNet"
    capabilities = ProviderCapabilities(supports_sync=False, supports_async=True)

    def __init__(
        self,
        api_token: str,
        model_version: str = "lucataco/sdxl-controlnet:latest",
        webhook_secret: str = "",
        health_timeout_seconds: float = 5.0,
        client: Optional[Any] = None,
    ):
        self._api_token = api_token
        self._model_version = model_version
        self._webhook_secret = webhook_secret
        self._health_timeout = health_timeout_seconds
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = replicate.Client(api_token=self._api_token)
        return self._client

    def _prediction_target(self) -> dict:
        """Split "owner/model:version" into create() arguments."""
        model, _, version = self._model_version.partition(":")
        if version and version != "latest":
            return {"version": version}
        return {"model": model}

    async def stage_async(
        self, staging_input: StagingInput, callback_url: str
    ) -> AsyncStagingResult:
        if not self._api_token and self._client is None:
            return AsyncStagingResult(success=False, error="REPLICATE_API_TOKEN not configured")

        encoded = base64.b64encode(staging_input.image_bytes).decode("ascii")
        prediction_input = {
            "prompt": self.build_prompt(staging_input.room_type, staging_input.furniture_style),
            "negative_prompt": self.build_negative_prompt(),
            "image": f"data:{staging_input.mime_type};base64,{encoded}",
            "num_inference_steps": NUM_INFERENCE_STEPS,
            "guidance_scale": GUIDANCE_SCALE,
            "controlnet_conditioning_scale": CONTROLNET_CONDITIONING_SCALE,
        }
        if staging_input.mask_bytes:
            mask = base64.b64encode(staging_input.mask_bytes).decode("ascii")
            prediction_input["mask"] = f"data:image/png;base64,{mask}"

        try:
            prediction = await asyncio.to_thread(
                self._get_client().predictions.create,
                input=prediction_input,
                webhook=callback_url,
                webhook_events_filter=["completed"],
                **self._prediction_target(),
            )
        except ReplicateError as exc:
            logger.error(f"Replicate prediction error for job {staging_input.job_id}: {exc}")
            return AsyncStagingResult(
                success=False,
                error=f"Replicate API error: {exc}",
                rate_limited=getattr(exc, "status", None) == 429,
            )
        except Exception as exc:
            logger.error(f"Replicate prediction failed for job {staging_input.job_id}: {exc}", exc_info=True)
            return AsyncStagingResult(success=False, error=str(exc) or "Replicate prediction failed")

        logger.info(f"Started Replicate prediction {prediction.id} for job {staging_input.job_id}")
        return AsyncStagingResult(
            success=True,
            provider_job_handle=prediction.id,
            estimated_seconds=self.estimated_processing_time_seconds(),
        )

    async def get_status(self, provider_job_handle: str) -> Optional[ProviderJobStatus]:
        try:
            prediction = await asyncio.to_thread(
                self._get_client().predictions.get, provider_job_handle
            )
        except Exception as exc:
            logger.warning(f"Could not fetch Replicate prediction {provider_job_handle}: {exc}")
            return None

        metrics = getattr(prediction, "metrics", None) or {}
        return ProviderJobStatus(
            handle=prediction.id,
            state=_parse_state(prediction.status),
            output_urls=_output_urls(prediction.output),
            error=_error_text(prediction.error),
            predict_time_seconds=metrics.get("predict_time"),
        )

    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderJobStatus:
        handle = payload.get("id")
        if not handle:
            raise ValueError("Replicate webhook payload has no prediction id")
        metrics = payload.get("metrics") or {}
        return ProviderJobStatus(
            handle=str(handle),
            state=_parse_state(payload.get("status")),
            output_urls=_output_urls(payload.get("output")),
            error=_error_text(payload.get("error")),
            predict_time_seconds=metrics.get("predict_time"),
        )

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        """Verify a Replicate (Standard Webhooks) HMAC-SHA256 signature."""
        if not self._webhook_secret:
            logger.warning("REPLICATE_WEBHOOK_SECRET not configured, skipping webhook verification")
            return True

        webhook_id = headers.get("webhook-id")
        timestamp = headers.get("webhook-timestamp")
        signatures = headers.get("webhook-signature")
        if not webhook_id or not timestamp or not signatures:
            return False

        try:
            if abs(time.time() - int(timestamp)) > WEBHOOK_TOLERANCE_SECONDS:
                return False
        except ValueError:
            return False

        secret = self._webhook_secret
        if secret.startswith("whsec_"):
            secret = secret[len("whsec_"):]
        try:
            key = base64.b64decode(secret)
        except ValueError:
            return False

        signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
        expected = base64.b64encode(
            hmac.new(key, signed_content, hashlib.sha256).digest()
        ).decode("ascii")

        for candidate in signatures.split():
            _, _, value = candidate.partition(",")
            if value and hmac.compare_digest(value, expected):
                return True
        return False

    async def check_health(self) -> ProviderHealth:
        if not self._api_token:
            return self._health(False, error_message="REPLICATE_API_TOKEN not configured")

        try:
            async with httpx.AsyncClient(timeout=self._health_timeout) as client:
                response = await client.get(
                    f"{REPLICATE_API_URL}/account",
                    headers={"Authorization": f"Bearer {self._api_token}"},
                )
        except httpx.HTTPError as exc:
            return self._health(False, error_message=str(exc) or "Replicate unreachable")

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
        return 30.0

    def build_prompt(self, room_type: str, furniture_style: str) -> str:
        # Keyword-style prompt; SD does not follow long instructions well
        room = room_label(room_type)
        style = style_label(furniture_style)
        return (
            f"Professional real estate photo, {room} interior, {style} style furniture and decor, "
            f"{self._furniture_list(room_type, style)}, "
            "photorealistic, high quality, professional photography, natural lighting, "
            "soft shadows, 8k resolution, architectural photography, interior design magazine quality, "
            "MLS listing photo, staged home, market ready"
        )

    def build_negative_prompt(self) -> str:
        return (
            "blurry, low quality, distorted, warped, bent lines, wrong perspective, "
            "floating objects, unrealistic shadows, cartoon, illustration, painting, "
            "artificial, CGI, rendered, 3D render, video game, "
            "people, pets, animals, faces, hands, "
            "text, watermark, signature, logo, "
            "cluttered, messy, dirty, damaged, "
            "different room, different angle, zoomed, cropped differently, "
            "walls changed, floor changed, ceiling changed, windows moved, doors moved"
        )

    @staticmethod
    def _furniture_list(room_type: str, style: str) -> str:
        if room_type in BEDROOM_TYPES:
            return f"{style} bed with headboard, matching nightstands, soft bedding and pillows, area rug, table lamps, wall art"
        return {
            "living-room": f"{style} sofa, accent chairs, coffee table, side tables, area rug, floor lamp, wall art, decorative pillows",
            "dining-room": f"{style} dining table, dining chairs, chandelier or pendant light, area rug, sideboard, table centerpiece",
            "kitchen": "bar stools at counter, decorative fruit bowl, small plants, coordinated accessories",
            "home-office": f"{style} desk, ergonomic office chair, bookshelf, desk lamp, wall art, area rug",
            "bathroom": "matching towels, bath mat, decorative accessories, small plant, coordinated soap dispenser",
            "outdoor-patio": f"{style} outdoor furniture set, potted plants, outdoor rug, decorative cushions, lanterns",
        }.get(room_type, f"{style} furniture, area rug, wall art, decorative accessories, plants")


def _parse_state(status: Optional[str]) -> PredictionState:
    try:
        return PredictionState(status)
    except ValueError:
        return PredictionState.PROCESSING


def _output_urls(output: Any) -> List[str]:
    if not output:
        return []
    if isinstance(output, str):
        return [output]
    return [str(item) for item in output if item]


def _error_text(error: Any) -> Optional[str]:
    if error is None or error == "":
        return None
    return str(error)
