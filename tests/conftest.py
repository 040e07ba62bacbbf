import sys
import os

import pytest

# Ensure repo root on sys.path for imports like `app...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.core.config import Settings  # noqa: E402


@pytest.fixture
def judge_settings(tmp_path):
    """Settings isolated from the host env: local mode, temp dir under tmp_path, this interpreter for python."""
    settings = Settings()
    settings.use_external_judge = False
    settings.judge_api_provider = ""
    settings.local_fallback_languages = ("javascript",)
    settings.judge_temp_dir = str(tmp_path)
    settings.judge_grace_ms = 500
    settings.python_binaries = (sys.executable,)
    settings.piston_enabled = True
    settings.piston_api_url = "http://piston.test/api/v2/piston"
    settings.judge0_api_key = ""
    settings.judge0_api_url = ""
    return settings
