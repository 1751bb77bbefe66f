"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    storage_bucket: str = "staging-images"

    # Backends
    job_store_backend: str = "memory"  # "memory" or "supabase"
    image_storage_backend: str = "local"  # "local" or "supabase"
    notifier_backend: str = "log"  # "log" or "supabase"
    local_storage_dir: str = "/data/staging"

    # Providers
    gemini_api_key: str = ""
    gemini_model: str = "gemini-3-pro-image-preview"
    replicate_api_token: str = ""
    replicate_model_version: str = "lucataco/sdxl-controlnet:latest"
    replicate_webhook_secret: str = ""
    decor8_api_key: str = ""
    decor8_base_url: str = "https://api.decor8.ai"
    provider_timeout_seconds: float = 120.0
    health_probe_timeout_seconds: float = 5.0

    # Routing
    default_provider: str = "gemini"
    enable_fallback: bool = True
    fallback_provider: Optional[str] = None

    # Health cache and polling
    health_cache_ttl_seconds: float = 60.0
    poll_interval_seconds: float = 2.0

    # Service surface
    public_base_url: str = "http://localhost:8001"
    compute_port: int = 8001
    max_image_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def resolved_fallback_provider(self) -> str:
        """Fallback provider id, derived from the default when not set."""
        if self.fallback_provider:
            return self.fallback_provider
        return "gemini" if self.default_provider == "stable-diffusion" else "stable-diffusion"


settings = Settings()
