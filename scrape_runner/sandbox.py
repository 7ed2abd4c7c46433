"""Keeps caller-supplied job paths inside the scripts base directory."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable

REQUIRED_FIELDS = ("programDirectory",)


def is_within_base(raw_path: Any, base_dir: Path | str) -> bool:
    """Return True when ``base_dir / raw_path`` resolves inside ``base_dir``.

    Both sides are resolved to their real paths (symlinks followed) before the
    prefix comparison, so a symlink inside the base pointing elsewhere is
    rejected. Resolution failures (missing path, permissions, symlink loops)
    mean the path is invalid.
    """
    if not isinstance(raw_path, str) or not raw_path:
        return False
    try:
        real_base = Path(base_dir).resolve(strict=True)
        real_candidate = (Path(base_dir) / raw_path).resolve(strict=True)
    except (OSError, RuntimeError, ValueError):
        return False

    base_str = str(real_base)
    candidate_str = str(real_candidate)
    if candidate_str == base_str:
        return True
    # Compare against "base/" so a sibling like "base-other" does not match.
    return candidate_str.startswith(base_str.rstrip(os.sep) + os.sep)


def _check_required(params: dict[str, Any], _: Path) -> str | None:
    for name in REQUIRED_FIELDS:
        if not params.get(name):
            return f"Error: {name} is required"
    return None


def _check_type(params: dict[str, Any], _: Path) -> str | None:
    if not isinstance(params["programDirectory"], str):
        return "Error: programDirectory must be a string"
    return None


def _check_sandbox(params: dict[str, Any], base_dir: Path) -> str | None:
    if not is_within_base(params["programDirectory"], base_dir):
        return "Error: Invalid program directory"
    return None


_CHECKS: tuple[Callable[[dict[str, Any], Path], str | None], ...] = (
    _check_required,
    _check_type,
    _check_sandbox,
)


def validate_job_params(params: Any, base_dir: Path) -> str | None:
    """Run the request checks in order and return the first failure message."""
    if not isinstance(params, dict):
        return "Error: request body must be a JSON object"
    for check in _CHECKS:
        error = check(params, base_dir)
        if error is not None:
            return error
    return None
