"""Google Gemini image-editing provider (synchronous only)."""

import asyncio
import logging
from typing import Any, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from roomstage.constants import BEDROOM_TYPES, room_label, style_description, style_label
from roomstage.providers.base import (
    ProviderCapabilities,
    ProviderHealth,
    ProviderId,
    StagingInput,
    StagingProvider,
    SyncStagingResult,
)

logger = logging.getLogger(__name__)

NO_IMAGE_ERROR = (
    "Image generation is not available. The AI analyzed your image "
    "but could not generate a staged version."
)

_BASE_ITEMS = """- An area rug placed ON TOP of the existing flooring
- Wall art or a mirror hung naturally on existing walls
- Subtle decorative accessories (minimal and restrained)
- Indoor plants (optional, realistic placement)
- Lamps that complement the existing lighting
- Curtains or blinds installed ONLY on existing windows"""


class GeminiProvider(StagingProvider):
    """Stages rooms with a Gemini image model via the google-genai SDK.

    The model can answer with text instead of an image (for example when it
    refuses the edit). That is reported as a failure carrying the text.
    """

    provider_id = ProviderId.GEMINI
    display_name = "Google Gemini"
    capabilities = ProviderCapabilities(supports_sync=True, supports_async=False)

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-3-pro-image-preview",
        timeout_seconds: float = 120.0,
        client: Optional[Any] = None,
    ):
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def stage_sync(self, staging_input: StagingInput) -> SyncStagingResult:
        if not self._api_key and self._client is None:
            return SyncStagingResult.failure("GEMINI_API_KEY not configured")

        prompt = self.build_prompt(staging_input.room_type, staging_input.furniture_style)
        parts = [
            types.Part(
                inline_data=types.Blob(
                    mime_type=staging_input.mime_type,
                    data=staging_input.image_bytes,
                )
            )
        ]
        if staging_input.mask_bytes:
            parts.append(
                types.Part(inline_data=types.Blob(mime_type="image/png", data=staging_input.mask_bytes))
            )
            prompt += (
                "\n\nThe second image is a mask. Only place furniture and decor "
                "inside its WHITE area; leave the BLACK area untouched."
            )
        parts.append(types.Part.from_text(text=prompt))

        try:
            response = await asyncio.wait_for(
                self._get_client().aio.models.generate_content(
                    model=self._model,
                    contents=parts,
                    config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Gemini staging timed out after {self._timeout}s (job {staging_input.job_id})")
            return SyncStagingResult.failure(f"Gemini request timed out after {self._timeout:.0f}s")
        except genai_errors.APIError as exc:
            logger.error(f"Gemini API error for job {staging_input.job_id}: {exc}")
            return SyncStagingResult.failure(
                f"Gemini API error: {exc}", rate_limited=getattr(exc, "code", None) == 429
            )
        except Exception as exc:
            logger.error(f"Gemini staging failed for job {staging_input.job_id}: {exc}", exc_info=True)
            return SyncStagingResult.failure(str(exc) or NO_IMAGE_ERROR)

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> SyncStagingResult:
        texts = []
        for candidate in response.candidates or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return SyncStagingResult(
                        success=True,
                        image_bytes=inline.data,
                        mime_type=inline.mime_type or "image/png",
                    )
                if getattr(part, "text", None):
                    texts.append(part.text)

        # Text-only answer: the model explained instead of editing
        text = "\n".join(texts).strip()
        return SyncStagingResult.failure(text or NO_IMAGE_ERROR)

    async def check_health(self) -> ProviderHealth:
        # No dedicated health endpoint; a configured key is treated as available
        if not self._api_key and self._client is None:
            return self._health(False, error_message="GEMINI_API_KEY not configured")
        return self._health(True)

    def estimated_processing_time_seconds(self) -> float:
        return 10.0

    def build_prompt(self, room_type: str, furniture_style: str) -> str:
        room = room_label(room_type)
        style = style_label(furniture_style)
        description = style_description(furniture_style)
        items = self._room_items(room_type, style)

        return f"""You are performing a LOCAL IMAGE EDIT using INPAINTING ONLY.

You are NOT generating a new image. You are editing a FIXED background photograph.
The input image is a professionally photographed, EMPTY {room}.
The camera position, lens, perspective, vanishing points, and framing are LOCKED.

TASK:
Realistically stage this EMPTY {room} by ADDING furniture and decor ONLY.

ABSOLUTE IMMUTABLE CONSTRAINTS - MUST NOT CHANGE:
- Camera angle, camera height, lens perspective, focal length, or field of view
- Image framing, crop, resolution, or aspect ratio
- Walls, flooring, ceiling, windows, doors, trim, or architectural features
- Existing lighting direction, brightness, color temperature, or shadow behavior

Only modify pixels where new furniture or decor is placed.
If furniture cannot be added without altering perspective or geometry, DO NOT ADD IT.

STYLE REQUIREMENTS:
Stage the room in a {style} style ({description}).
Favor neutral, market-friendly interpretations of this style.

ONLY ADD THE FOLLOWING:
{items}

DO NOT add people, pets, electronics, clutter, or personal items.

ROOM LOGIC & SPACING:
- Furniture layout must reflect how a real {room} is used
- Maintain clear walkways and do not block doors, windows, or vents

REALISM REQUIREMENTS:
- Added objects must be photorealistic with shadows matching the existing lighting
- No floating objects, warped geometry, or CGI appearance

Perform a professional real estate virtual staging edit that looks naturally photographed and MLS-ready.
Stage this {room} in {style} style."""

    def build_negative_prompt(self) -> str:
        return "people, pets, clutter, text, watermark, changed walls, changed floor, changed camera angle"

    @staticmethod
    def _room_items(room_type: str, style: str) -> str:
        if room_type in BEDROOM_TYPES:
            return (
                "- A bed appropriate for the bedroom, scaled realistically to the room\n"
                "- Matching nightstands placed beside the bed\n"
                f"- Soft bedding, pillows, and neutral textiles in {style} style\n{_BASE_ITEMS}"
            )
        specific = {
            "living-room": (
                f"- A sofa or sectional sized appropriately for the space in {style} style\n"
                "- One or two accent chairs for additional seating\n"
                "- A coffee table and side tables as needed\n"
                f"{_BASE_ITEMS}"
            ),
            "dining-room": (
                f"- A dining table sized appropriately for the room in {style} style\n"
                "- Dining chairs (typically 4-8 depending on table size)\n"
                "- A sideboard or buffet if wall space allows\n"
                f"{_BASE_ITEMS}"
            ),
            "kitchen": (
                "- Bar stools if there is a counter or island\n"
                "- Decorative items on counters (minimal and tasteful)\n"
                f"{_BASE_ITEMS}"
            ),
            "home-office": (
                f"- A desk sized appropriately for the space in {style} style\n"
                "- An office chair\n"
                "- Bookshelves or storage if wall space allows\n"
                f"{_BASE_ITEMS}"
            ),
            "bathroom": (
                "- Towels, bath mat, and textiles in coordinating colors\n"
                "- Countertop accessories (soap dispenser, tray, etc.)\n"
                "- A small plant or decorative items"
            ),
            "outdoor-patio": (
                f"- Outdoor seating (chairs, sofa, or dining set) in {style} style\n"
                "- Outdoor-appropriate tables\n"
                "- Potted plants and planters\n"
                "- Cushions and outdoor textiles"
            ),
        }
        return specific.get(room_type, f"- Furniture appropriate for the space in {style} style\n{_BASE_ITEMS}")
