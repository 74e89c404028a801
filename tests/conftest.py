"""Root test configuration for Analytics X-Ray.

Sets XRAY_PANEL_LOCALHOST_ONLY=false for the entire test suite: TestClient
reports its client host as 'testclient', which the panel access middleware
would otherwise reject with 403.

test_panel_access_middleware.py re-enables the check with its own
autouse fixture.

Config discovery is pinned so a developer's ~/.xray/config.yaml or
XRAY_* environment never leaks into test results.
"""

import pytest


@pytest.fixture(autouse=True)
def disable_localhost_check_for_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """Disable the panel localhost-only check for all tests by default."""
    monkeypatch.setenv("XRAY_PANEL_LOCALHOST_ONLY", "false")


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ignore config files and overrides from the developer's machine."""
    monkeypatch.setattr("xray.config.DEFAULT_CONFIG_PATHS", [])
    monkeypatch.delenv("XRAY_CONFIG", raising=False)
    monkeypatch.delenv("XRAY_PORT", raising=False)
    monkeypatch.delenv("XRAY_STORAGE_PATH", raising=False)
