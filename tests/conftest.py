import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scrape_runner.settings import Settings  # noqa: E402


@pytest.fixture
def scripts_dir(tmp_path):
    """Base directory with one job directory, ``job``."""
    base = tmp_path / "scripts"
    (base / "job").mkdir(parents=True)
    (base / "job" / "app.mjs").write_text("console.log('done')\n")
    return base


@pytest.fixture
def settings(scripts_dir):
    return Settings(scripts_dir=str(scripts_dir), is_debug=True)
