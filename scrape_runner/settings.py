from __future__ import annotations

import os
from dataclasses import dataclass, field

RUNTIME_IMAGE = "ghcr.io/puppeteer/puppeteer:22.10.0"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() == "true"


@dataclass(frozen=True)
class Settings:
    scripts_dir: str = field(
        default_factory=lambda: os.getenv(
            "APP_PATH_FOR_SCRIPTS", "/home/on-demand-scraping/scripts"
        )
    )
    is_debug: bool = field(default_factory=lambda: _env_flag("APP_IS_DEBUG_ON"))
    port: int = field(default_factory=lambda: int(os.getenv("APP_PORT", 3646)))
    docker_url: str = field(
        default_factory=lambda: os.getenv("DOCKER_HOST", "unix:///var/run/docker.sock")
    )
    runtime_image: str = field(
        default_factory=lambda: os.getenv("APP_RUNTIME_IMAGE", RUNTIME_IMAGE)
    )
    # Paths inside the runtime image; pptruser owns its home directory there.
    container_mount: str = "/home/pptruser/app"
    container_workdir: str = "/home/pptruser/workdir"
    max_image_pulls: int = 1


def get_settings() -> Settings:
    return Settings()
