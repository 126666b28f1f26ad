"""REST/JSON API adapter."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from ..errors import FetchError, ItemValidationError, ParseError
from ..models import Source
from .base import SourceAdapter
from .configs import ApiConfig, validate_adapter_config
from .dates import parse_date
from .http import RateLimitState, build_client, get, request
from .models import NormalizedItem
from .paths import extract_path
from .urls import host_of, resolve_http_url, resolve_url

logger = structlog.get_logger()

TEXT_FIELDS = ("title", "content", "url", "image", "summary", "author")
DEFAULT_TOKEN_LIFETIME = 3600
# Tokens are renewed this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 30


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _as_categories(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(v).strip() for v in value if isinstance(v, (str, int)) and str(v).strip()]
    return []


def parse_json(response: httpx.Response) -> Any:
    """Decode a JSON body, raising ParseError on empty or invalid payloads."""
    if not response.content.strip():
        raise ParseError(f"Empty response from {response.url}")
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"Invalid JSON from {response.url}: {e}") from e


def map_item(raw: Any, config: ApiConfig, source_url: str) -> NormalizedItem:
    """
    Map one raw API record onto a normalized item.

    Raises ItemValidationError when the record is not an object, lacks a
    title or url, or its url is not an http(s) URL.
    """
    if not isinstance(raw, dict):
        raise ItemValidationError(f"Record is a {type(raw).__name__}, not an object")

    fields: Dict[str, Any] = {}
    meta: Dict[str, Any] = {}
    for target, path in config.field_mapping.items():
        value = extract_path(raw, path)
        if value is None:
            continue
        if target == "meta":
            if isinstance(value, dict):
                meta.update(value)
        elif target in TEXT_FIELDS:
            fields[target] = _as_text(value)
        elif target == "publish_date":
            fields["publish_date"] = parse_date(value, config.date_format)
        elif target == "categories":
            fields["categories"] = _as_categories(value)
        else:
            meta[target] = value

    title = fields.get("title")
    if not title:
        raise ItemValidationError("Record has no title")
    if not fields.get("url"):
        raise ItemValidationError(f"Record '{title}' has no url")
    url = resolve_http_url(fields["url"], source_url)
    if not url:
        raise ItemValidationError(f"Record '{title}' url {fields['url']!r} is not http(s)")

    image = fields.get("image")
    return NormalizedItem(
        title=title,
        content=fields.get("content") or "",
        url=url,
        source_url=source_url,
        publish_date=fields.get("publish_date"),
        author=fields.get("author"),
        image=resolve_http_url(image, source_url) if image else None,
        summary=fields.get("summary"),
        categories=fields.get("categories", []),
        content_type=config.content_type,
        meta=meta,
    )


class ApiAdapter(SourceAdapter):
    """
    Fetch items from JSON APIs with optional auth and pagination.

    OAuth2 access tokens are cached per source until shortly before they
    expire. Rate-limit headers are tracked per host so later pages and later
    fetches wait out an exhausted budget instead of hammering the API.
    """

    source_type = "api"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """Initialize adapter with empty token and rate-limit caches."""
        super().__init__(*args, **kwargs)
        self._tokens: Dict[str, Tuple[str, float]] = {}
        self._rate_limits: Dict[str, RateLimitState] = {}

    def rate_limit_state(self, url: str) -> RateLimitState:
        """Return the rate-limit state of the host serving url."""
        return self._rate_limits.setdefault(host_of(url), RateLimitState())

    async def fetch(self, source: Source) -> List[NormalizedItem]:
        """Fetch all pages of an API source and map the records."""
        config: ApiConfig = validate_adapter_config(self.source_type, source.adapter_config)

        headers = dict(config.headers)
        params: Dict[str, Any] = {}
        auth = None
        if config.auth_type == "basic":
            auth = httpx.BasicAuth(config.auth_username, config.auth_password)
        elif config.auth_type == "bearer":
            headers["Authorization"] = f"Bearer {config.auth_token}"
        elif config.auth_type == "api_key":
            if config.auth_key_in == "query":
                params[config.auth_key_name] = config.auth_key_value
            else:
                headers[config.auth_key_name] = config.auth_key_value
        headers.setdefault("Accept", "application/json")

        async with build_client(
            timeout=config.timeout or self.timeout,
            user_agent=config.user_agent or self.user_agent,
            headers=headers,
            auth=auth,
            transport=self.transport,
        ) as client:
            if config.auth_type == "oauth2":
                token = await self.get_oauth_token(client, source, config)
                client.headers["Authorization"] = f"Bearer {token}"
            try:
                records = await self._fetch_records(client, source.url, params, config)
            except FetchError as e:
                if e.status_code == 401 and config.auth_type == "oauth2":
                    self._tokens.pop(self._token_key(source), None)
                raise

        items = self.collect_items(source, records[: config.max_items], lambda raw: map_item(raw, config, source.url))

        logger.info("api_parsed", source=source.name, records=len(records), items=len(items))
        return items

    @staticmethod
    def _token_key(source: Source) -> str:
        return str(source.id) if source.id is not None else source.url

    async def get_oauth_token(self, client: httpx.AsyncClient, source: Source, config: ApiConfig) -> str:
        """
        Return an OAuth2 access token for the source.

        A cached token is reused until it is about to expire. Otherwise a new
        one is requested from the token endpoint with the configured client
        credentials. Raises FetchError when the endpoint refuses or answers
        without an access_token.
        """
        key = self._token_key(source)
        cached = self._tokens.get(key)
        if cached and cached[1] > time.time():
            return cached[0]

        data = {
            "grant_type": config.oauth_grant_type,
            "client_id": config.oauth_client_id,
            "client_secret": config.oauth_client_secret,
        }
        if config.oauth_scope:
            data["scope"] = config.oauth_scope

        try:
            response = await request(
                client, "POST", config.oauth_token_url, data=data, headers={"Accept": "application/json"}
            )
            payload = parse_json(response)
        except (FetchError, ParseError) as e:
            raise FetchError(f"OAuth token request failed: {e}", status_code=getattr(e, "status_code", None)) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise FetchError(f"OAuth token response from {config.oauth_token_url} has no access_token")

        try:
            lifetime = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        self._tokens[key] = (token, time.time() + lifetime - TOKEN_EXPIRY_MARGIN)
        logger.info("oauth_token_acquired", source=source.name, expires_in=lifetime)
        return token

    async def _wait_for_rate_limit(self, state: RateLimitState, url: str, config: ApiConfig) -> None:
        wait = state.wait_seconds(time.time())
        if wait <= 0:
            return
        if wait > config.max_rate_limit_wait:
            raise FetchError(
                f"Rate limited by {url}, retry after {wait:.0f}s",
                status_code=429,
                retry_after=str(int(wait)),
            )
        logger.info("api_rate_limit_wait", url=url, seconds=round(wait, 2))
        await asyncio.sleep(wait)

    async def _fetch_records(
        self,
        client: httpx.AsyncClient,
        url: str,
        base_params: Dict[str, Any],
        config: ApiConfig,
    ) -> List[Any]:
        strategy = config.pagination_strategy
        records: List[Any] = []
        cursor = None
        next_url: Optional[str] = url

        for page in range(config.max_pages):
            params = dict(base_params)
            if strategy == "page":
                params[config.page_param] = page + 1
                params[config.per_page_param] = config.per_page
            elif strategy == "offset":
                params[config.offset_param] = page * config.per_page
                params[config.limit_param] = config.per_page
            elif strategy == "cursor" and cursor:
                params[config.cursor_param] = cursor

            if page and config.page_delay:
                await asyncio.sleep(config.page_delay)
            state = self.rate_limit_state(next_url)
            await self._wait_for_rate_limit(state, next_url, config)

            try:
                response = await get(client, next_url, params=params)
            except FetchError as e:
                if e.status_code == 429:
                    backoff = state.back_off(e.retry_after, page, time.time())
                    logger.warning("api_rate_limited", url=next_url, backoff=backoff)
                raise
            state.update(response.headers, time.time())

            data = parse_json(response)
            batch = extract_path(data, config.items_path) if config.items_path else data
            if not isinstance(batch, list):
                raise ParseError(f"No item list at '{config.items_path or '<root>'}' in response from {url}")

            records.extend(batch)
            logger.debug("api_page", url=next_url, page=page + 1, records=len(batch), remaining=state.remaining)

            if strategy == "none" or not batch or len(records) >= config.max_items:
                break
            if strategy in ("page", "offset") and len(batch) < config.per_page:
                break
            if strategy == "cursor":
                cursor = extract_path(data, config.cursor_path)
                if not cursor:
                    break
            if strategy == "link":
                link = response.links.get("next", {}).get("url")
                if not link:
                    break
                next_url = resolve_url(link, str(response.url))

        return records
