"""Research model client (Perplexity chat/completions with web citations).

Returns a WebResult: prose content, one WebSource per cited URL (snippets
attached from search_results when present) and the raw citation URLs.
Citations are read from both data.citations and
choices[0].message.citations. Any failure returns None.

Usage:
    from abi.utils.research_client import research
    web = await research(query, history)
"""

import asyncio
import logging

from ..config import settings
from ..http_client import http
from ..prompts import RESEARCH_SYSTEM_PROMPT
from ..schemas.chat import ChatMessage, WebResult, WebSource
from . import extract_domain

log = logging.getLogger("abi.research")

HISTORY_TURNS = 4


def is_configured() -> bool:
    return bool(settings.perplexity_api_key)


def build_request(query: str, history: list[ChatMessage] | None = None, max_tokens: int = 1500) -> dict:
    messages = [{"role": "system", "content": RESEARCH_SYSTEM_PROMPT}]
    for msg in (history or [])[-HISTORY_TURNS:]:
        messages.append({
            "role": "user" if msg.role == "user" else "assistant",
            "content": msg.content,
        })
    messages.append({"role": "user", "content": query})
    return {
        "model": settings.perplexity_model,
        "messages": messages,
        "temperature": 0.2,
        "max_tokens": max_tokens,
        "return_citations": True,
        "search_recency_filter": "month",
    }


def _citation_urls(data: dict) -> list[str]:
    urls: list[str] = []
    message = {}
    choices = data.get("choices") or []
    if choices:
        message = choices[0].get("message") or {}
    for url in (data.get("citations") or []) + (message.get("citations") or []):
        if isinstance(url, dict):
            url = url.get("url")
        if url and url not in urls:
            urls.append(url)
    return urls


def _display_name(url: str) -> str:
    domain = extract_domain(url)
    return domain[:1].upper() + domain[1:]


def parse_response(data: dict) -> WebResult:
    choices = data.get("choices") or []
    content = ""
    if choices:
        content = (choices[0].get("message") or {}).get("content") or ""

    snippets: dict[str, str] = {}
    for result in data.get("search_results") or []:
        url = result.get("url")
        text = result.get("text") or result.get("snippet")
        if url and text:
            snippets[url] = text

    urls = _citation_urls(data)
    for url in snippets:
        if url not in urls:
            urls.append(url)

    sources = [
        WebSource(
            name=_display_name(url),
            url=url,
            domain=extract_domain(url),
            snippet=snippets.get(url),
        )
        for url in urls
    ]
    return WebResult(content=content.strip(), sources=sources, raw_citations=urls)


async def _post(body: dict) -> WebResult | None:
    resp = await http.post(
        f"{settings.perplexity_api_url.rstrip('/')}/chat/completions",
        headers={
            "Authorization": f"Bearer {settings.perplexity_api_key}",
            "Content-Type": "application/json",
        },
        json=body,
    )
    if resp.status_code != 200:
        log.warning(f"Research API {resp.status_code}: {resp.text[:200]}")
        return None
    return parse_response(resp.json())


async def research(
    query: str, history: list[ChatMessage] | None = None, *, timeout: float | None = None
) -> WebResult | None:
    if not is_configured():
        return None
    deadline = timeout if timeout is not None else settings.research_timeout_seconds
    try:
        return await asyncio.wait_for(_post(build_request(query, history)), timeout=deadline)
    except asyncio.TimeoutError:
        log.warning(f"Research call timed out after {deadline}s")
        return None
    except Exception as e:
        log.warning(f"Research call failed: {e}")
        return None
