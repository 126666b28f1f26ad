"""Shared HTTP plumbing for adapters."""

from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import BaseModel

from ..errors import FetchError
from .dates import parse_date

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "contentcrawl/0.1 (Content Crawler)"

RATE_LIMIT_STATUSES = (429, 403, 503)


def build_client(
    timeout: float,
    user_agent: str,
    headers: Optional[Dict[str, str]] = None,
    auth: Optional[httpx.Auth] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient with the adapter defaults applied."""
    merged = {"User-Agent": user_agent}
    merged.update(headers or {})
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers=merged,
        auth=auth,
        transport=transport,
    )


def check_response(response: httpx.Response) -> None:
    """
    Raise FetchError for non-2xx responses.

    Rate-limit responses (429, 403, 503) carry the Retry-After header value.
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    url = str(response.request.url) if response.request else ""
    if status in RATE_LIMIT_STATUSES:
        retry_after = response.headers.get("Retry-After")
        message = f"Rate limited by {url} (HTTP {status})"
        if retry_after:
            message += f", retry after {retry_after}"
        raise FetchError(message, status_code=status, retry_after=retry_after)
    raise FetchError(f"HTTP {status} from {url}", status_code=status)


async def request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request and translate transport failures into FetchError."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise FetchError(f"Timed out fetching {url}: {e}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"HTTP error fetching {url}: {e}") from e
    check_response(response)
    logger.debug("http_response", url=url, status=response.status_code, size=len(response.content))
    return response


async def get(client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
    """GET a URL, raising FetchError on failure."""
    return await request(client, "GET", url, **kwargs)


RATE_LIMIT_HEADERS = {
    "remaining": ("x-ratelimit-remaining", "x-rate-limit-remaining", "ratelimit-remaining"),
    "limit": ("x-ratelimit-limit", "x-rate-limit-limit", "ratelimit-limit"),
    "reset": ("x-ratelimit-reset", "x-rate-limit-reset", "ratelimit-reset"),
}
MAX_BACKOFF = 3600.0


def retry_after_seconds(value: Optional[str], now: float) -> Optional[float]:
    """Seconds to wait for a Retry-After value given as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    when = parse_date(value)
    if when is None:
        return None
    return max(when.timestamp() - now, 0.0)


class RateLimitState(BaseModel):
    """
    Request budget an API host reports through its rate-limit headers.

    Times are epoch seconds. A reset header below one billion is read as
    seconds from now, larger values as an absolute epoch time.
    """

    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_at: Optional[float] = None
    blocked_until: Optional[float] = None

    def update(self, headers: httpx.Headers, now: float) -> None:
        """Record the rate-limit headers of a response."""
        for field, names in RATE_LIMIT_HEADERS.items():
            raw = next((headers[name] for name in names if headers.get(name)), None)
            if raw is None:
                continue
            try:
                value = int(float(raw))
            except ValueError:
                continue
            if field == "reset":
                self.reset_at = float(value) if value > 1e9 else now + value
            else:
                setattr(self, field, value)

        wait = retry_after_seconds(headers.get("retry-after"), now)
        if wait is not None:
            self.blocked_until = now + wait

    def back_off(self, retry_after: Optional[str], attempt: int, now: float) -> float:
        """Block the host after a rate-limit response. Returns the backoff in seconds."""
        wait = retry_after_seconds(retry_after, now)
        if wait is None:
            wait = min(2.0 ** attempt, MAX_BACKOFF)
        self.blocked_until = now + wait
        return wait

    def wait_seconds(self, now: float) -> float:
        """Seconds to wait before the next request to the host."""
        waits = [0.0]
        if self.blocked_until is not None:
            waits.append(self.blocked_until - now)
        if self.remaining == 0 and self.reset_at is not None:
            waits.append(self.reset_at - now)
        return max(waits)
