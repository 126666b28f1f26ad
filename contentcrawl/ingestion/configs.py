"""Typed per-adapter configuration models.

Sources store their adapter configuration as an opaque map. The models here
give each source type a schema so misconfiguration is caught when a source is
created or updated rather than on the next crawl.
"""

import re
from typing import Any, Dict, List, Literal, Optional, Type

from cssselect import HTMLTranslator, SelectorError
from lxml import etree
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from ..errors import ConfigError

_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "s": re.DOTALL,
    "m": re.MULTILINE,
    "x": re.VERBOSE,
    "u": 0,
}
_DELIMITED_RE = re.compile(r"^/(.*)/([imsxu]*)$", re.DOTALL)


def compile_regex(pattern: str) -> "re.Pattern[str]":
    """
    Compile a selector regex.

    Accepts plain patterns and delimited ``/pattern/flags`` forms. PCRE-style
    named groups ``(?<name>...)`` are rewritten to Python's ``(?P<name>...)``.
    """
    flags = 0
    match = _DELIMITED_RE.match(pattern)
    if match:
        pattern, flag_chars = match.groups()
        for char in flag_chars:
            flags |= _REGEX_FLAGS[char]
    pattern = re.sub(r"\(\?<([A-Za-z_]\w*)>", r"(?P<\1>", pattern)
    return re.compile(pattern, flags)


class BaseAdapterConfig(BaseModel):
    """Settings shared by every HTTP-based adapter."""

    headers: Dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    user_agent: Optional[str] = Field(None, description="User-Agent override")
    timeout: Optional[float] = Field(None, description="Request timeout in seconds", gt=0)
    content_type: str = Field("article", description="Content type assigned to items")

    class Config:
        """Pydantic config."""

        extra = "forbid"


class CleaningOptions(BaseModel):
    """Content cleaning steps for scraped content."""

    remove_scripts: bool = True
    remove_styles: bool = True
    remove_comments: bool = True
    remove_empty_tags: bool = False
    normalize_whitespace: bool = True
    remove_attributes: List[str] = Field(default_factory=list)
    extract_text_only: bool = False

    class Config:
        """Pydantic config."""

        extra = "forbid"


class FeedConfig(BaseAdapterConfig):
    """Feed adapter configuration."""

    max_items: int = Field(50, description="Maximum entries taken from a feed", ge=1)
    autodiscover: bool = Field(True, description="Look for feed links when the URL is an HTML page")
    author_overwrite: Optional[str] = Field(None, description="Force the author of every item")
    content_selector: Optional[str] = Field(None, description="XPath narrowing item content")

    @model_validator(mode="after")
    def check_selector(self) -> "FeedConfig":
        """Compile the content selector."""
        if self.content_selector:
            try:
                etree.XPath(self.content_selector)
            except etree.XPathSyntaxError as e:
                raise ValueError(f"Invalid content_selector: {e}")
        return self


DEFAULT_FIELD_MAPPING = {
    "title": "title",
    "content": "content",
    "url": "url",
    "publish_date": "date",
    "image": "image",
    "summary": "summary",
    "author": "author",
}


class ApiConfig(BaseAdapterConfig):
    """API adapter configuration."""

    auth_type: Literal["none", "basic", "bearer", "api_key", "oauth2"] = "none"
    auth_username: Optional[str] = None
    auth_password: Optional[str] = None
    auth_token: Optional[str] = None
    auth_key_name: Optional[str] = None
    auth_key_value: Optional[str] = None
    auth_key_in: Literal["header", "query"] = "header"
    oauth_token_url: Optional[str] = None
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None
    oauth_scope: Optional[str] = None
    oauth_grant_type: str = "client_credentials"

    items_path: str = Field("", description="Path to the item collection in the response")
    field_mapping: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_FIELD_MAPPING))
    date_format: Optional[str] = Field(None, description="strptime format of date values")

    pagination_strategy: Literal["none", "page", "offset", "cursor", "link"] = "none"
    per_page: int = Field(20, ge=1)
    page_param: str = "page"
    per_page_param: str = "per_page"
    offset_param: str = "offset"
    limit_param: str = "limit"
    cursor_param: str = "cursor"
    cursor_path: str = "meta.next_cursor"
    max_pages: int = Field(5, ge=1)
    max_items: int = Field(100, ge=1)
    page_delay: float = Field(0.2, description="Pause between paginated requests in seconds", ge=0)
    max_rate_limit_wait: float = Field(
        30.0, description="Longest rate-limit wait honoured before the fetch fails, in seconds", ge=0
    )

    @model_validator(mode="after")
    def check_auth(self) -> "ApiConfig":
        """Require the credentials the auth type needs."""
        if self.auth_type == "basic" and not (self.auth_username and self.auth_password):
            raise ValueError("basic auth requires auth_username and auth_password")
        if self.auth_type == "bearer" and not self.auth_token:
            raise ValueError("bearer auth requires auth_token")
        if self.auth_type == "api_key" and not (self.auth_key_name and self.auth_key_value):
            raise ValueError("api_key auth requires auth_key_name and auth_key_value")
        if self.auth_type == "oauth2" and not (
            self.oauth_token_url and self.oauth_client_id and self.oauth_client_secret
        ):
            raise ValueError("oauth2 auth requires oauth_token_url, oauth_client_id and oauth_client_secret")
        if "title" not in self.field_mapping or "url" not in self.field_mapping:
            raise ValueError("field_mapping must map title and url")
        return self


SelectorType = Literal["xpath", "css", "regex", "schema", "json"]


class ScraperConfig(BaseAdapterConfig):
    """Scraper adapter configuration."""

    selector_type: SelectorType = "xpath"
    item_selector: Optional[str] = None
    title_selector: Optional[str] = None
    content_selector: Optional[str] = None
    url_selector: Optional[str] = None
    image_selector: Optional[str] = None
    date_selector: Optional[str] = Field(
        None, validation_alias=AliasChoices("date_selector", "publish_date_selector")
    )
    author_selector: Optional[str] = None
    summary_selector: Optional[str] = None
    meta_selectors: Dict[str, str] = Field(default_factory=dict)
    use_inner_html: bool = False
    content_cleaning: CleaningOptions = Field(default_factory=CleaningOptions)
    date_format: Optional[str] = None
    schema_mappings: Dict[str, Dict[str, str]] = Field(
        default_factory=dict, description="Extra Schema.org type -> field -> property mappings"
    )

    auth_type: Literal["none", "basic", "cookie", "header"] = "none"
    auth_username: Optional[str] = None
    auth_password: Optional[str] = None
    cookies: Dict[str, str] = Field(default_factory=dict)
    auth_header_name: Optional[str] = None
    auth_header_value: Optional[str] = None

    render_javascript: bool = False
    js_renderer_url: Optional[str] = None
    wait_for_selector: Optional[str] = None
    wait_time: int = Field(5000, ge=0, description="Renderer wait in milliseconds")

    def field_selectors(self) -> Dict[str, Optional[str]]:
        """Selectors keyed by item field name."""
        return {
            "title": self.title_selector,
            "content": self.content_selector,
            "url": self.url_selector,
            "image": self.image_selector,
            "publish_date": self.date_selector,
            "author": self.author_selector,
            "summary": self.summary_selector,
        }

    @model_validator(mode="after")
    def check_selectors(self) -> "ScraperConfig":
        """Compile every selector in its dialect."""
        selectors = [self.item_selector, *self.field_selectors().values(), *self.meta_selectors.values()]
        for selector in filter(None, selectors):
            try:
                if self.selector_type == "xpath" or (
                    self.selector_type == "schema" and selector.startswith("/")
                ):
                    etree.XPath(selector)
                elif self.selector_type == "css":
                    HTMLTranslator().css_to_xpath(selector)
                elif self.selector_type == "regex":
                    compile_regex(selector)
            except (etree.XPathSyntaxError, SelectorError, re.error, KeyError) as e:
                raise ValueError(f"Invalid {self.selector_type} selector {selector!r}: {e}")
        if self.render_javascript and not self.js_renderer_url:
            raise ValueError("render_javascript requires js_renderer_url")
        if self.auth_type == "basic" and not (self.auth_username and self.auth_password):
            raise ValueError("basic auth requires auth_username and auth_password")
        if self.auth_type == "header" and not (self.auth_header_name and self.auth_header_value):
            raise ValueError("header auth requires auth_header_name and auth_header_value")
        return self


ADAPTER_CONFIG_MODELS: Dict[str, Type[BaseAdapterConfig]] = {
    "feed": FeedConfig,
    "api": ApiConfig,
    "scraper": ScraperConfig,
}


def validate_adapter_config(source_type: str, raw: Optional[Dict[str, Any]]) -> Optional[BaseAdapterConfig]:
    """
    Validate a raw configuration map for a source type.

    Returns the typed model, or None for source types without a schema.

    Raises:
        ConfigError: If the configuration does not validate.
    """
    model = ADAPTER_CONFIG_MODELS.get(getattr(source_type, "value", source_type))
    if model is None:
        return None
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid {source_type} configuration: {e}") from e
