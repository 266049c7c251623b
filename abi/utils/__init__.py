"""Shared utility helpers: model clients and tolerant JSON parsing."""


def truncate(text: str | None, limit: int, suffix: str = "...") -> str:
    """Cut text to limit chars, adding suffix only when something was cut."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + suffix


def extract_domain(url: str | None) -> str:
    """Hostname without a leading www., or 'source' when unparsable."""
    from urllib.parse import urlparse

    try:
        host = urlparse(url or "").hostname
    except ValueError:
        host = None
    if not host:
        return "source"
    return host[4:] if host.startswith("www.") else host
