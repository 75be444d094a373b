from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, store access, and runtime limits."""
    gemini_api_key: str
    gemini_model: str
    gemini_temperature: float
    gemini_max_output_tokens: int
    supabase_url: str
    supabase_key: str
    photo_bucket: str
    store_path: Optional[Path]
    prompts_dir: Path
    context_window: int
    history_limit: int
    search_limit: int
    store_timeout: float
    generation_timeout: float
    rate_limit: int
    rate_limit_window: float
    platform_name: str
    platform_founder: str

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv and BASE_DIR for the prompt directory.
    Failure Modes: Invalid numeric env values raise ValueError.
    If Removed: App cannot configure Gemini, the store, or limits and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve optional paths, then build Settings.
    store_path = os.getenv("STORE_PATH")
    prompts_dir = Path(os.getenv("PROMPTS_DIR") or (BASE_DIR / "prompts")).resolve()

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        gemini_temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.7")),
        gemini_max_output_tokens=int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "1024")),
        supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_key=os.getenv("SUPABASE_KEY", ""),
        photo_bucket=os.getenv("PHOTO_BUCKET", "post-photos"),
        store_path=Path(store_path) if store_path else None,
        prompts_dir=prompts_dir,
        context_window=int(os.getenv("CONTEXT_WINDOW", "20")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "50")),
        search_limit=int(os.getenv("SEARCH_LIMIT", "20")),
        store_timeout=float(os.getenv("STORE_TIMEOUT_SECONDS", "5")),
        generation_timeout=float(os.getenv("GENERATION_TIMEOUT_SECONDS", "30")),
        rate_limit=int(os.getenv("RATE_LIMIT", "20")),
        rate_limit_window=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
        platform_name=os.getenv("PLATFORM_NAME", "Campus Marketplace"),
        platform_founder=os.getenv("PLATFORM_FOUNDER", "Mark Daniel"),
    )
