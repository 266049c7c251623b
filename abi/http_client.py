"""Pooled outbound client for the model endpoints and the supplier source.

Gemini, Perplexity and the supplier-intelligence API all go through
`http`, so a chat turn that fans out to both streams reuses keep-alive
connections. Callers pass their own per-call deadline; the pool default
only guards callers that forget.
"""

import httpx
from loguru import logger

from .config import settings

http = httpx.AsyncClient(
    timeout=settings.http_default_timeout_seconds,
    limits=httpx.Limits(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_keepalive_connections,
    ),
    headers={"User-Agent": "abi-procurement/1.0"},
    follow_redirects=False,
)


async def close_clients() -> None:
    """Close the pool on shutdown. A client already closed by its loop is ignored."""
    if http.is_closed:
        return
    try:
        await http.aclose()
    except RuntimeError as exc:
        logger.debug("HTTP pool already torn down: {}", exc)
