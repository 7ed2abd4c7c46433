from __future__ import annotations

from pathlib import Path

from scrape_runner.settings import Settings, get_settings


def scripts_base_dir(settings: Settings | None = None) -> Path:
    """Root directory every job's code must resolve under."""
    settings = settings or get_settings()
    return Path(settings.scripts_dir).resolve()
