"""
Reachability check for the gateway and the browser debugging endpoint.

Run with ``python -m oc_bridge.main``; configuration comes from the OC_*
environment variables (see ``config.BridgeConfig.from_env``).
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from .browser import BrowserClient
from .config import BridgeConfig
from .gateway import GatewayClient

logger = logging.getLogger("oc_bridge")


def build_report(config: BridgeConfig) -> dict[str, Any]:
    gateway_ok = GatewayClient.from_config(config).test_connection()
    browser_ok = BrowserClient.from_config(config).test_connection()
    return {
        "gateway": {"url": config.gateway_url, "ok": gateway_ok},
        "browser": {"url": config.browser_url, "ok": browser_ok},
        "sessionPrefix": config.session_prefix,
        "defaultAgent": config.default_agent,
    }


def main() -> int:
    """Print a JSON reachability report; exit 0 only when both peers respond."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    config = BridgeConfig.from_env()
    report = build_report(config)
    logger.info("gateway_ok=%s browser_ok=%s", report["gateway"]["ok"], report["browser"]["ok"])
    sys.stdout.write(json.dumps(report, indent=2) + "\n")
    return 0 if report["gateway"]["ok"] and report["browser"]["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
