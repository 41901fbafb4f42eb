"""
Environment driven settings.

Values are read from the process environment after loading `.env.local` and
`.env` (if present), so local development can keep credentials out of the
shell profile.
"""

from __future__ import annotations

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Optional  # noqa: E402


@dataclass(frozen=True)
class Settings:
    http_timeout: float = 30.0
    aws_region: Optional[str] = None
    base_dir: Path = Path(__file__).resolve().parent
    s3_bucket: Optional[str] = None
    s3_prefix: str = "docmix/"
    cache_ttl: int = 3600
    cache_size: int = 256

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            http_timeout=float(os.getenv("DOCMIX_HTTP_TIMEOUT", "30")),
            aws_region=os.getenv("AWS_REGION") or None,
            base_dir=Path(os.getenv("DOCMIX_BASE_DIR") or Path(__file__).resolve().parent),
            s3_bucket=os.getenv("DOCMIX_S3_BUCKET") or None,
            s3_prefix=os.getenv("DOCMIX_S3_PREFIX", "docmix/"),
            cache_ttl=int(os.getenv("DOCMIX_CACHE_TTL", "3600")),
            cache_size=int(os.getenv("DOCMIX_CACHE_SIZE", "256")),
        )


def get_settings() -> Settings:
    """Settings for the current environment (re-read on every call)."""
    return Settings.from_env()
