import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass
class Settings:
    supabase_url: str
    supabase_key: str
    state_dir: Path
    request_timeout: float = 10.0


def load_settings() -> Settings:
    """Load settings from environment (and .env, if present)."""
    load_dotenv()
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_ANON_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set in .env")
    return Settings(
        supabase_url=url.rstrip("/"),
        supabase_key=key,
        state_dir=Path(os.environ.get("HAGGLE_STATE_DIR", ".haggle")),
        request_timeout=float(os.environ.get("HAGGLE_REQUEST_TIMEOUT", "10")),
    )
