from __future__ import annotations

import http.client
import json
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

USER_AGENT = "oc-bridge/1.0"


class HttpClientError(Exception):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _build_request(url: str, method: str) -> Request:
    try:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported")
        return Request(url, method=method, headers={"User-Agent": USER_AGENT})
    except ValueError as exc:
        raise HttpClientError(f"Invalid URL {url}: {exc}") from exc


def http_request(url: str, *, method: str = "GET", timeout: float = 10.0) -> str:
    """Perform a request and return the decoded body; non-2xx raises."""
    req = _build_request(url, method)
    try:
        with urlopen(req, timeout=timeout) as resp:
            return resp.read().decode(errors="replace")
    except HTTPError as exc:
        detail = exc.read().decode(errors="replace").strip()
        raise HttpClientError(f"HTTP {exc.code}: {detail or exc.reason}", status=exc.code) from exc
    except (TimeoutError, URLError, OSError, http.client.HTTPException, ValueError) as exc:
        # InvalidURL (non-numeric port) and malformed responses are HTTPException.
        raise HttpClientError(str(exc)) from exc


def http_json(url: str, *, method: str = "GET", timeout: float = 10.0) -> Any:
    """Fetch JSON from URL."""
    body = http_request(url, method=method, timeout=timeout)
    try:
        return json.loads(body or "null")
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


def http_ok(url: str, *, timeout: float = 5.0) -> bool:
    """Return True when the URL answers with a 2xx status."""
    try:
        http_request(url, timeout=timeout)
    except HttpClientError:
        return False
    return True


__all__ = ["HttpClientError", "USER_AGENT", "http_json", "http_ok", "http_request"]
