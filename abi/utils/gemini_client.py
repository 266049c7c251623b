"""Fast JSON model client (Gemini generateContent).

Every call carries a hard deadline: asyncio.wait_for cancels the
in-flight httpx request when it expires. Failures of any kind (no key,
timeout, HTTP error, empty text) return None and log a warning; callers
fall back to deterministic output.

Usage:
    from abi.utils.gemini_client import gemini_generate
    text = await gemini_generate(prompt, json_mode=True, timeout=20)
"""

import asyncio
import logging
from typing import Any

from ..config import settings
from ..http_client import http

log = logging.getLogger("abi.gemini")


def is_configured() -> bool:
    return bool(settings.gemini_api_key)


def _url() -> str:
    return f"{settings.gemini_api_url.rstrip('/')}/{settings.gemini_model}:generateContent"


def build_request(
    prompt: str,
    *,
    temperature: float = 0.3,
    top_p: float | None = 0.8,
    top_k: int | None = 40,
    max_tokens: int = 2048,
    json_mode: bool = True,
) -> dict:
    config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_tokens}
    if top_p is not None:
        config["topP"] = top_p
    if top_k is not None:
        config["topK"] = top_k
    if json_mode:
        config["responseMimeType"] = "application/json"
    return {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": config,
    }


def extract_text(data: dict) -> str:
    """candidates[0].content.parts[0].text, or '' when any level is missing."""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


async def _post(body: dict) -> str | None:
    resp = await http.post(
        _url(),
        headers={"Content-Type": "application/json", "x-goog-api-key": settings.gemini_api_key},
        json=body,
    )
    if resp.status_code != 200:
        log.warning(f"Gemini API {resp.status_code}: {resp.text[:200]}")
        return None
    text = extract_text(resp.json())
    if not text:
        log.warning("Gemini returned empty text")
        return None
    return text


async def gemini_generate(
    prompt: str,
    *,
    temperature: float = 0.3,
    top_p: float | None = 0.8,
    top_k: int | None = 40,
    max_tokens: int = 2048,
    json_mode: bool = True,
    timeout: float | None = None,
) -> str | None:
    """Generate text with a deadline. Returns None on any failure."""
    if not is_configured():
        return None

    body = build_request(
        prompt,
        temperature=temperature,
        top_p=top_p,
        top_k=top_k,
        max_tokens=max_tokens,
        json_mode=json_mode,
    )
    deadline = timeout if timeout is not None else settings.synthesis_timeout_seconds
    try:
        return await asyncio.wait_for(_post(body), timeout=deadline)
    except asyncio.TimeoutError:
        log.warning(f"Gemini call timed out after {deadline}s")
        return None
    except Exception as e:
        log.warning(f"Gemini call failed: {e}")
        return None
