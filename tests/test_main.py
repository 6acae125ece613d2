from __future__ import annotations

import json

import pytest

from oc_bridge import main as main_mod
from oc_bridge.browser import BrowserClient
from oc_bridge.gateway import GatewayClient


@pytest.mark.parametrize(
    ("gateway_ok", "browser_ok", "code"),
    [(True, True, 0), (True, False, 1), (False, True, 1), (False, False, 1)],
)
def test_main_reports_and_sets_exit_code(monkeypatch, capsys, gateway_ok, browser_ok, code) -> None:  # noqa: ANN001
    monkeypatch.setenv("OC_GATEWAY_URL", "http://gw.test:18789")
    monkeypatch.setenv("OC_BROWSER_URL", "http://chrome.test:9222/")
    monkeypatch.setenv("OC_SESSION_PREFIX", "acme")
    monkeypatch.delenv("OC_DEFAULT_AGENT", raising=False)
    monkeypatch.setattr(GatewayClient, "test_connection", lambda self: gateway_ok)
    monkeypatch.setattr(BrowserClient, "test_connection", lambda self: browser_ok)

    assert main_mod.main() == code

    report = json.loads(capsys.readouterr().out)
    assert report == {
        "gateway": {"url": "ws://gw.test:18789/", "ok": gateway_ok},
        "browser": {"url": "http://chrome.test:9222", "ok": browser_ok},
        "sessionPrefix": "acme",
        "defaultAgent": "main",
    }
