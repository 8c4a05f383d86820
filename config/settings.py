"""
Application Settings
====================
Reads every runtime knob from environment variables.

Environment Variables:
- SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_SERVICE_KEY) / SUPABASE_ANON_KEY
- REDIS_URL: rate limiter backend (optional, falls back to in-process windows)
- LAOZHANG_API_KEY: Sora 2, Veo 3 and Nano Banana providers
- NEWPORTAI_API_KEY: LipSync provider
- WAVESPEED_API_KEY: InfiniteTalk provider
- CRON_SECRET: protects the /{tool}/cron trigger
"""

import math
import os
from typing import Optional

# Slack on top of the submission budget before a dispatch-less record is an orphan
ORPHAN_GRACE_MARGIN_SECONDS = 30


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


class Settings:
    """Centralized runtime configuration."""

    def __init__(self):
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

        # Supabase
        self.SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
        self.SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY")
        self.SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY") or self.SUPABASE_SERVICE_KEY
        self.VIDEOS_BUCKET = os.getenv("VIDEOS_BUCKET", "videos")
        self.IMAGES_BUCKET = os.getenv("IMAGES_BUCKET", "images")
        self.MAX_ARTIFACT_BYTES = _int_env("MAX_ARTIFACT_BYTES", 500 * 1024 * 1024)

        # Redis (rate limiting)
        self.REDIS_URL = os.getenv("REDIS_URL")
        self.RATE_LIMITS_ENABLED = os.getenv("RATE_LIMITS_ENABLED", "true").lower() != "false"

        # Provider credentials
        self.LAOZHANG_API_KEY = os.getenv("LAOZHANG_API_KEY")
        self.NEWPORTAI_API_KEY = os.getenv("NEWPORTAI_API_KEY")
        self.WAVESPEED_API_KEY = os.getenv("WAVESPEED_API_KEY")

        # Provider call policy
        self.PROVIDER_TIMEOUT_SECONDS = _float_env("PROVIDER_TIMEOUT_SECONDS", 30.0)
        self.PROVIDER_SYNC_TIMEOUT_SECONDS = _float_env("PROVIDER_SYNC_TIMEOUT_SECONDS", 60.0)
        self.ARTIFACT_DOWNLOAD_TIMEOUT_SECONDS = _float_env("ARTIFACT_DOWNLOAD_TIMEOUT_SECONDS", 60.0)
        self.PROVIDER_MAX_RETRIES = _int_env("PROVIDER_MAX_RETRIES", 3)

        # Reconciliation
        self.PROCESS_BATCH_SIZE = _int_env("PROCESS_BATCH_SIZE", 10)
        self.CRON_BATCH_SIZE = _int_env("CRON_BATCH_SIZE", 20)
        self.MAX_POLL_ERRORS = _int_env("MAX_POLL_ERRORS", 5)
        self.STALE_TIMEOUT_SECONDS = _int_env("STALE_TIMEOUT_SECONDS", 10 * 60)
        self.ORPHAN_GRACE_SECONDS = _int_env("ORPHAN_GRACE_SECONDS", 60)
        self.ORPHAN_BATCH_SIZE = _int_env("ORPHAN_BATCH_SIZE", 100)
        self.WORKER_INTERVAL_SECONDS = _float_env("WORKER_INTERVAL_SECONDS", 30.0)
        # 'subscription' refunds everything to the subscription pool,
        # 'split' replays the pools recorded at debit time when known
        self.REFUND_POLICY = os.getenv("REFUND_POLICY", "subscription")

        # Cron
        self.CRON_SECRET = os.getenv("CRON_SECRET")

        # Stripe
        self.STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
        self.STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    def submit_budget_seconds(self) -> float:
        """Longest a submission can run: one input image download plus one create call."""
        return self.ARTIFACT_DOWNLOAD_TIMEOUT_SECONDS + max(
            self.PROVIDER_TIMEOUT_SECONDS, self.PROVIDER_SYNC_TIMEOUT_SECONDS
        )

    def orphan_grace_seconds(self) -> int:
        """ORPHAN_GRACE_SECONDS, raised so the sweeper never races a submission still in flight."""
        floor = math.ceil(self.submit_budget_seconds()) + ORPHAN_GRACE_MARGIN_SECONDS
        if self.ORPHAN_GRACE_SECONDS < floor:
            return floor
        return self.ORPHAN_GRACE_SECONDS

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def cors_origins(self) -> list:
        origins = ["http://localhost:3000", self.FRONTEND_URL]
        return [o for o in dict.fromkeys(origins) if o]


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create Settings singleton"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
