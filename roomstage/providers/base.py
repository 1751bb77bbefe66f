"""Provider interface and data types for AI staging backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ProviderId(str, Enum):
    GEMINI = "gemini"
    STABLE_DIFFUSION = "stable-diffusion"
    DECOR8 = "decor8"


class PredictionState(str, Enum):
    """Normalized provider-side status of an async job."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PredictionState.SUCCEEDED,
            PredictionState.FAILED,
            PredictionState.CANCELED,
        )


@dataclass(frozen=True)
class ProviderCapabilities:
    """Capability set a provider declares. Callers dispatch on these flags."""
    supports_sync: bool
    supports_async: bool
    supports_declutter: bool = False


@dataclass
class StagingInput:
    """Everything a provider needs to stage one room image in one style."""
    image_bytes: bytes
    mime_type: str
    room_type: str
    furniture_style: str
    job_id: str
    image_url: Optional[str] = None
    mask_bytes: Optional[bytes] = None


@dataclass
class SyncStagingResult:
    success: bool
    image_bytes: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None
    rate_limited: bool = False
    # Provider-hosted copy of the image, when the provider returns one
    source_url: Optional[str] = None

    @classmethod
    def failure(cls, error: str, rate_limited: bool = False) -> "SyncStagingResult":
        return cls(success=False, error=error, rate_limited=rate_limited)


@dataclass
class AsyncStagingResult:
    success: bool
    provider_job_handle: Optional[str] = None
    estimated_seconds: Optional[float] = None
    error: Optional[str] = None
    rate_limited: bool = False


@dataclass
class ProviderJobStatus:
    """Provider-reported state of an async job, from a webhook or a status query."""
    handle: str
    state: PredictionState
    output_urls: List[str] = field(default_factory=list)
    error: Optional[str] = None
    predict_time_seconds: Optional[float] = None

    @property
    def output_url(self) -> Optional[str]:
        return self.output_urls[0] if self.output_urls else None


@dataclass(frozen=True)
class ProviderHealth:
    provider: str
    available: bool
    rate_limited: bool = False
    reset_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.available and not self.rate_limited

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "available": self.available,
            "rate_limited": self.rate_limited,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "error_message": self.error_message,
        }


class StagingProvider(ABC):
    """Abstract base class for AI staging providers.

    To add a provider:
    1. Subclass StagingProvider in roomstage/providers/
    2. Declare provider_id, display_name and capabilities
    3. Implement the methods its capabilities promise
    4. Add it to build_providers() in registry.py

    Staging calls never raise past this boundary: failures come back as
    results with success=False.
    """

    provider_id: ProviderId
    display_name: str
    capabilities: ProviderCapabilities

    async def stage_sync(self, staging_input: StagingInput) -> SyncStagingResult:
        """Stage an image and block until the result is available."""
        return SyncStagingResult.failure(
            f"{self.display_name} does not support synchronous staging"
        )

    async def stage_async(
        self, staging_input: StagingInput, callback_url: str
    ) -> AsyncStagingResult:
        """Start remote staging and return a handle; completion arrives later."""
        return AsyncStagingResult(
            success=False,
            error=f"{self.display_name} does not support asynchronous staging",
        )

    async def remove_objects(self, staging_input: StagingInput) -> SyncStagingResult:
        """Declutter pre-pass: return the room with existing furniture removed."""
        return SyncStagingResult.failure(
            f"{self.display_name} does not support decluttering"
        )

    async def get_status(self, provider_job_handle: str) -> Optional[ProviderJobStatus]:
        """Query an async job. Returns None when the provider could not be reached."""
        return None

    def parse_webhook(self, payload: Mapping[str, Any]) -> ProviderJobStatus:
        """Turn a provider callback body into a ProviderJobStatus."""
        raise ValueError(f"{self.display_name} does not accept webhooks")

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> bool:
        """Check the authenticity of a callback. Providers without signing accept all."""
        return True

    @abstractmethod
    async def check_health(self) -> ProviderHealth:
        """Lightweight liveness/quota probe. Must not raise."""
        ...

    @abstractmethod
    def build_prompt(self, room_type: str, furniture_style: str) -> str:
        ...

    def build_negative_prompt(self) -> str:
        return ""

    @abstractmethod
    def estimated_processing_time_seconds(self) -> float:
        ...

    def _health(
        self,
        available: bool,
        rate_limited: bool = False,
        reset_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> ProviderHealth:
        return ProviderHealth(
            provider=self.provider_id.value,
            available=available,
            rate_limited=rate_limited,
            reset_at=reset_at,
            error_message=error_message,
        )


def reset_from_retry_after(retry_after: Optional[str]) -> Optional[datetime]:
    """Quota reset time from a Retry-After header given in seconds."""
    if retry_after and retry_after.strip().isdigit():
        return datetime.now(timezone.utc) + timedelta(seconds=int(retry_after))
    return None
