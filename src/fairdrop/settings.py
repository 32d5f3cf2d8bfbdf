"""Process settings read from the environment (and a .env file, if present).

    PI_API_URL          payment API base URL (default https://api.minepi.com/v2)
    PI_API_KEY          payment API key; required when FAIRDROP_ENV=production
    FAIRDROP_ENV        "development" (default) or "production"
    FAIRDROP_DATA_DIR   journal directory (default data/)
    ANCHOR_PRIVATE_KEY  key used by anchor-commitment
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from fairdrop.errors import ValidationError
from fairdrop.settlement.payments import DEFAULT_PI_API_URL

ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class Settings:
    environment: str
    pi_api_url: str
    pi_api_key: Optional[str]
    data_dir: Path
    anchor_private_key: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> Settings:
    """Build Settings from ``env`` (default: os.environ after loading .env)."""
    if env is None:
        load_dotenv(dotenv_path or ROOT / ".env")
        env = os.environ

    environment = env.get("FAIRDROP_ENV", "development").strip().lower() or "development"
    api_key = env.get("PI_API_KEY") or None
    if environment == "production" and not api_key:
        raise ValidationError("PI_API_KEY is required when FAIRDROP_ENV=production")

    return Settings(
        environment=environment,
        pi_api_url=env.get("PI_API_URL") or DEFAULT_PI_API_URL,
        pi_api_key=api_key,
        data_dir=Path(env.get("FAIRDROP_DATA_DIR") or "data"),
        anchor_private_key=env.get("ANCHOR_PRIVATE_KEY") or None,
    )
