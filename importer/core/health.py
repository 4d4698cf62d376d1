"""
Connectivity checks for the external services the pipeline depends on.

Checks:
- source: Taobao Global product endpoint (fetches a known item)
- ai: Anthropic Messages API (trivial prompt)
- background: PhotoRoom (key format only, no credits spent)
- publisher: Shopify Admin API (``GET /shop.json``)

Returns ``"healthy"`` when every probe passes and ``"degraded"`` otherwise.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class ConnectionProbe(Protocol):
    async def test_connection(self) -> bool: ...


async def check_service(name: str, probe: ConnectionProbe) -> dict:
    """
    Run one probe.

    Returns:
        ``{"status": "up", "latency_ms": float}`` or
        ``{"status": "down", "error": str}``
    """
    try:
        start = time.monotonic()
        ok = await probe.test_connection()
        latency = round((time.monotonic() - start) * 1000, 1)
    except Exception as e:
        logger.warning(f"{name} health check failed: {e}")
        return {"status": "down", "error": str(e)}

    if not ok:
        return {"status": "down", "error": "connection test returned false"}
    return {"status": "up", "latency_ms": latency}


async def check_services(**probes: ConnectionProbe | None) -> dict:
    """
    Probe every configured service concurrently.

    Args:
        **probes: Service name → object with ``async test_connection()``.
            ``None`` values are skipped.
    """
    configured = {name: probe for name, probe in probes.items() if probe is not None}

    results = await asyncio.gather(
        *(check_service(name, probe) for name, probe in configured.items())
    )
    services = dict(zip(configured, results))

    all_up = all(s["status"] == "up" for s in services.values())
    return {
        "status": "healthy" if all_up else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
    }
