from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture()
def settings():
    from config.settings import Settings

    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        session_ready_event="session.created",
        show_timing_math=True,
    )


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read the cached settings.
    os.environ["OPENAI_API_KEY"] = "sk-test"
    os.environ.pop("PUBLIC_BASE_URL", None)

    import importlib

    # Ensure clean import with the test settings.
    for module_name in [
        "config.settings",
        "api.twilio_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app
