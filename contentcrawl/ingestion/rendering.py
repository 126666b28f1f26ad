"""Optional hop through an external JavaScript rendering service."""

from typing import Optional

import httpx
import structlog

from ..errors import FetchError
from .http import request

logger = structlog.get_logger()


async def render_page(
    client: httpx.AsyncClient,
    renderer_url: str,
    url: str,
    wait_for_selector: Optional[str] = None,
    wait_time: int = 5000,
) -> Optional[str]:
    """
    Ask the rendering service for the post-JavaScript HTML of a page.

    The service receives ``{url, waitForSelector, waitTime}`` and answers with
    ``{"html": ...}``. Returns None when the service fails so callers can keep
    the HTML they already fetched.
    """
    payload = {"url": url, "waitForSelector": wait_for_selector, "waitTime": wait_time}
    try:
        response = await request(client, "POST", renderer_url, json=payload)
        data = response.json()
    except (FetchError, ValueError) as e:
        logger.warning("render_failed", url=url, renderer=renderer_url, error=str(e))
        return None

    rendered = data.get("html") if isinstance(data, dict) else None
    if not rendered:
        logger.warning("render_empty", url=url, renderer=renderer_url)
        return None
    return rendered
