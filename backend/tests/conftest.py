import os
import sys
from pathlib import Path

import pytest
import sentry_sdk
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
test_data_dir = ROOT / "artifacts" / "test-data"
test_data_dir.mkdir(parents=True, exist_ok=True)
os.environ["DATA_DIR"] = str(test_data_dir)

from backend.app import deps, llm_intent  # noqa: E402
from backend.app.health import health_checker  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.settings import settings  # noqa: E402


@pytest.fixture
def client():
    with TestClient(app, base_url="http://api.testserver") as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def isolated_settings():
    settings.RATE_LIMIT_ENABLED = False
    settings.OPENAI_API_KEY = None
    settings.SENTRY_DSN = None
    settings.MCP_URL = None
    os.environ.pop("OPENAI_API_KEY", None)
    llm_intent.reset_state()
    deps.reset_singletons()
    health_checker.clear_cache()
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()
    deps.reset_singletons()
