"""URL resolution against a page or feed base URL."""

from typing import Optional
from urllib.parse import urljoin, urlsplit


def is_absolute(url: str) -> bool:
    """Return True for http(s) URLs with a host."""
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def resolve_url(url: str, base_url: str) -> str:
    """
    Resolve url against base_url.

    Handles absolute, protocol-relative (//host/path), root-relative (/path)
    and relative forms including ``.`` and ``..`` segments. An empty url
    resolves to the base itself.
    """
    url = (url or "").strip()
    if not url:
        return base_url
    if is_absolute(url):
        return url
    # urljoin applies RFC 3986 dot-segment removal, so "../" never climbs past the root
    return urljoin(base_url, url)


def host_of(url: str) -> str:
    """Extract the lower-cased host name from a URL."""
    return (urlsplit(url).hostname or "unknown").lower()


def resolve_http_url(url: str, base_url: str) -> Optional[str]:
    """Resolve url against base_url, or None when the result is not an http(s) URL."""
    resolved = resolve_url(url, base_url)
    return resolved if is_absolute(resolved) else None
