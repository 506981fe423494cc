"""Allow-listed GET pass-through to the external aggregator."""

from __future__ import annotations

from typing import Any
from urllib.parse import unquote, urlparse

import httpx
import structlog

from marketsync.errors import HostNotAllowedError, TransportError, UpstreamError, ValidationError

log = structlog.get_logger(__name__)


def validate_target(url: str | None, allowed_hosts: list[str]) -> str:
    """Return the decoded target URL if its host is an allowed host or one of its subdomains."""
    if not url:
        raise ValidationError("Missing 'url' parameter")
    target = unquote(url)
    parsed = urlparse(target)
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise ValidationError(f"Invalid target url: {target}")
    for allowed in allowed_hosts:
        allowed = allowed.lower().lstrip(".")
        if host == allowed or host.endswith("." + allowed):
            return target
    raise HostNotAllowedError(f"Host not allowed: {host}")


async def forward_get(client: httpx.AsyncClient, target: str) -> Any:
    """GET target and return its JSON body. Non-2xx is relayed as UpstreamError(status_code)."""
    log.info("proxy_request", url=target)
    try:
        resp = await client.get(target, headers={"Accept": "application/json", "User-Agent": "marketsync/0.1"})
    except httpx.HTTPError as e:
        raise TransportError(f"Upstream unreachable: {e}") from e
    if not resp.is_success:
        log.warning("proxy_upstream_error", url=target, status=resp.status_code)
        raise UpstreamError(f"Upstream returned {resp.status_code}", status_code=resp.status_code)
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError("Upstream returned a malformed body") from e
