"""Headless browser control via the Chrome DevTools Protocol.

Tabs are discovered and managed through the browser's HTTP endpoints
(``/json``, ``/json/new``, ``/json/close``); commands go over a dedicated
raw WebSocket to the current tab's debugger URL.

Opening a URL on a host that already has a tab reuses that tab instead of
creating a new one.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus, urlsplit

from .config import DEFAULT_BROWSER_URL, BridgeConfig
from .errors import BrowserError
from .http_client import HttpClientError, http_json, http_ok, http_request
from .session_cdp import CdpConnection

logger = logging.getLogger("oc_bridge.browser")

_PAGE_READY_JS = """new Promise((resolve) => {
    const timeout = setTimeout(() => resolve('timeout'), %d);
    const check = () => {
        if (document.readyState === 'complete') {
            clearTimeout(timeout);
            resolve('ready');
        } else {
            setTimeout(check, 100);
        }
    };
    check();
})"""


def _host_of(url: str) -> str | None:
    try:
        return urlsplit(url or "").hostname
    except ValueError:
        return None


@dataclass
class Target:
    """One browser tab as reported by the discovery endpoint."""

    target_id: str
    url: str = ""
    debugger_url: str | None = None
    type: str = "page"

    @property
    def host(self) -> str | None:
        return _host_of(self.url)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Target:
        return cls(
            target_id=str(data.get("id") or ""),
            url=str(data.get("url") or ""),
            debugger_url=data.get("webSocketDebuggerUrl") or None,
            type=str(data.get("type") or ""),
        )


class BrowserClient:
    """Drive one browser tab at a time.

    Not safe for concurrent use: an instance owns a single current target and
    a single debugger socket. Use separate instances for parallel sessions.
    """

    def __init__(
        self,
        browser_url: str = DEFAULT_BROWSER_URL,
        *,
        command_timeout: float = 30.0,
        http_timeout: float = 10.0,
        page_ready_timeout: int = 15,
        settle_delay: float = 1.0,
    ) -> None:
        self.browser_url = browser_url.rstrip("/")
        self.command_timeout = float(command_timeout)
        self.http_timeout = float(http_timeout)
        self.page_ready_timeout = int(page_ready_timeout)
        self.settle_delay = float(settle_delay)
        self.target: Target | None = None
        self._conn: CdpConnection | None = None

    @classmethod
    def from_config(cls, config: BridgeConfig, **kwargs: Any) -> BrowserClient:
        return cls(config.browser_url, http_timeout=config.http_timeout, **kwargs)

    @property
    def target_id(self) -> str | None:
        return self.target.target_id if self.target else None

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def open(self, url: str) -> str:
        """Open a URL, reusing a tab on the same host when one exists.

        Returns the adopted target id.
        """
        existing = self._find_tab_by_host(_host_of(url))
        if existing is not None:
            self._adopt(existing)
            logger.info("tab_reused target=%s host=%s", existing.target_id, existing.host)
            if existing.url != url:
                self.navigate(url)
            return existing.target_id

        try:
            data = http_json(f"{self.browser_url}/json/new?{quote_plus(url)}", method="PUT", timeout=self.http_timeout)
        except HttpClientError as exc:
            raise BrowserError(f"Failed to open browser tab: {exc}") from exc

        created = Target.from_json(data) if isinstance(data, dict) else None
        if created is None or not created.target_id:
            raise BrowserError("No target ID returned from browser")
        if not created.url:
            created.url = url

        self._adopt(created)
        logger.info("tab_created target=%s host=%s", created.target_id, created.host)
        self._wait_for_page_ready()
        return created.target_id

    def navigate(self, url: str) -> None:
        """Navigate the current tab and wait until the page has loaded."""
        self._ensure_target()
        self._send_command("Page.navigate", {"url": url})
        if self.target is not None:
            self.target.url = url
        self._wait_for_page_ready()

    def screenshot(self, path: str | Path | None = None, full_page: bool = True) -> str:
        """Capture the current page as PNG.

        Returns the path when one is given, otherwise the base64 image data.
        """
        self._ensure_target()

        params: dict[str, Any] = {"format": "png"}
        if full_page:
            params.update(self._full_page_clip())

        result = self._send_command("Page.captureScreenshot", params)
        image_data = result.get("data")
        if not image_data:
            raise BrowserError("Screenshot capture returned no data")

        if path is None:
            return image_data

        try:
            raw = base64.b64decode(image_data)
        except (binascii.Error, ValueError) as exc:
            raise BrowserError(f"Screenshot data is not valid base64: {exc}") from exc
        out = Path(path)
        out.write_bytes(raw)
        logger.info("screenshot_saved path=%s bytes=%d", out, len(raw))
        return str(path)

    def test_connection(self) -> bool:
        """Return True if the browser's debugging endpoint responds."""
        return http_ok(f"{self.browser_url}/json/version", timeout=5.0)

    def list_targets(self) -> list[Target]:
        """List open page targets."""
        try:
            data = http_json(f"{self.browser_url}/json", timeout=self.http_timeout)
        except HttpClientError as exc:
            raise BrowserError(f"Failed to fetch browser targets: {exc}") from exc
        if not isinstance(data, list):
            return []
        return [Target.from_json(item) for item in data if isinstance(item, dict) and item.get("type") == "page"]

    def close(self) -> None:
        """Close the current tab and release the debugger socket."""
        self.disconnect()

        target = self.target
        if target is None:
            return
        self.target = None
        try:
            http_request(f"{self.browser_url}/json/close/{target.target_id}", timeout=self.http_timeout)
        except HttpClientError as exc:
            raise BrowserError(f"Failed to close browser tab {target.target_id}: {exc}") from exc
        logger.info("tab_closed target=%s", target.target_id)

    def disconnect(self) -> None:
        """Close the debugger socket; the tab stays open."""
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def __enter__(self) -> BrowserClient:
        return self

    def __exit__(self, *args) -> None:
        self.disconnect()

    # ─────────────────────────────────────────────────────────────────────────
    # Tab/target management
    # ─────────────────────────────────────────────────────────────────────────

    def _find_tab_by_host(self, host: str | None) -> Target | None:
        if not host:
            return None
        try:
            targets = self.list_targets()
        except BrowserError as exc:
            # Unreachable discovery: tab creation below reports the real failure.
            logger.warning("tab_lookup_failed host=%s error=%s", host, exc)
            return None
        for target in targets:
            if target.host == host:
                return target
        return None

    def _adopt(self, target: Target) -> None:
        if self.target is None or self.target.target_id != target.target_id:
            self.disconnect()
        self.target = target

    def _ensure_target(self) -> Target:
        if self.target is not None:
            return self.target

        try:
            targets = self.list_targets()
        except BrowserError:
            targets = []
        if targets:
            self._adopt(targets[0])
            logger.info("tab_adopted target=%s", targets[0].target_id)
            return targets[0]

        raise BrowserError("No browser tab open. Call open() first.")

    # ─────────────────────────────────────────────────────────────────────────
    # CDP command layer
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_connection(self) -> CdpConnection:
        target = self._ensure_target()
        if self._conn is not None and not self._conn.closed:
            return self._conn

        if not target.debugger_url:
            for candidate in self.list_targets():
                if candidate.target_id == target.target_id:
                    target.debugger_url = candidate.debugger_url
                    break
            if not target.debugger_url:
                raise BrowserError(f"No webSocketDebuggerUrl found for target {target.target_id}")

        self._conn = CdpConnection.open(target.debugger_url, timeout=self.command_timeout)
        return self._conn

    def _send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        conn = self._ensure_connection()
        try:
            return conn.send(method, params)
        except BrowserError:
            if conn.closed:
                self._conn = None
            raise

    def _wait_for_page_ready(self) -> None:
        time.sleep(self.settle_delay)
        self._send_command(
            "Runtime.evaluate",
            {
                "expression": _PAGE_READY_JS % (self.page_ready_timeout * 1000),
                "awaitPromise": True,
                "returnByValue": True,
            },
        )

    def _full_page_clip(self) -> dict[str, Any]:
        layout = self._send_command("Page.getLayoutMetrics")
        content = layout.get("cssContentSize") or layout.get("contentSize")
        viewport = layout.get("cssLayoutViewport") or layout.get("layoutViewport")
        if not content and not viewport:
            return {}

        content = content or {}
        viewport = viewport or {}
        width = max(float(content.get("width") or 0), float(viewport.get("clientWidth") or 0))
        height = max(float(content.get("height") or 0), float(viewport.get("clientHeight") or 0))
        return {
            "captureBeyondViewport": True,
            "clip": {"x": 0, "y": 0, "width": width, "height": height, "scale": 1},
        }


__all__ = ["BrowserClient", "Target"]
