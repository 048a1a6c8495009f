from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture()
def settings(tmp_path: Path):
    from config.settings import Settings

    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        openai_base_url="https://agent.test/v1",
        openai_realtime_ws_url="wss://agent.test/v1/realtime",
        activation_api_url="https://bank.test/activation",
        activation_password="cGFzcw==",
        activation_auth_key="a2V5",
        data_dir=tmp_path,
        calls_dir=tmp_path / "calls",
    )


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before importing modules that read settings.
    os.environ["DATA_DIR"] = str(tmp_dir)
    os.environ["CALLS_DIR"] = str(tmp_dir / "calls")
    os.environ["OPENAI_API_KEY"] = "sk-test"
    os.environ["OPENAI_BASE_URL"] = "https://agent.test/v1"

    import importlib

    # Ensure clean import with the test settings.
    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.routes",
        "api.twilio_routes",
        "api.webhooks",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
