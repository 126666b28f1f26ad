"""Source adapter contract and adapter registry."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import structlog
from lxml import etree

from ..errors import ConfigError, ItemValidationError
from ..models import Source
from .http import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from .models import NormalizedItem

logger = structlog.get_logger()


class SourceAdapter(ABC):
    """
    Fetch a source and translate its payload into normalized items.

    An empty list means the source had nothing to offer this cycle. Failures
    to reach or parse the source are raised as FetchError or ParseError.
    """

    source_type: str = ""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize adapter."""
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    @abstractmethod
    async def fetch(self, source: Source) -> List[NormalizedItem]:
        """Fetch and normalize the items of a source."""

    def collect_items(
        self,
        source: Source,
        records: Iterable[Any],
        build: Callable[[Any], NormalizedItem],
    ) -> List[NormalizedItem]:
        """
        Build items from raw records, dropping the ones that cannot be built.

        ``build`` raises ItemValidationError for records missing mandatory
        fields. Malformed markup or field values are dropped the same way, so
        one bad record never fails the whole source.
        """
        items = []
        for record in records:
            try:
                items.append(build(record))
            except ItemValidationError as e:
                logger.debug("item_dropped", source=source.name, reason=str(e))
            except (ValueError, etree.LxmlError) as e:
                logger.warning("item_invalid", source=source.name, error=str(e))
        return items


class AdapterRegistry:
    """Map source types to adapter instances."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._adapters: Dict[str, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter, source_type: Optional[str] = None) -> None:
        """Register an adapter under its source type, replacing any previous one."""
        key = source_type or adapter.source_type
        if not key:
            raise ConfigError(f"{type(adapter).__name__} does not declare a source type")
        self._adapters[key] = adapter

    def get(self, source_type: str) -> SourceAdapter:
        """
        Resolve the adapter for a source type.

        Raises:
            ConfigError: If no adapter is registered for the type.
        """
        key = getattr(source_type, "value", source_type)
        try:
            return self._adapters[key]
        except KeyError:
            raise ConfigError(f"No adapter registered for source type '{key}'") from None

    def types(self) -> List[str]:
        """Registered source types, sorted."""
        return sorted(self._adapters)

    def __contains__(self, source_type: object) -> bool:
        return getattr(source_type, "value", source_type) in self._adapters


def default_registry(
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdapterRegistry:
    """Build a registry holding the feed, API and scraper adapters."""
    from .api_adapter import ApiAdapter
    from .feed_adapter import FeedAdapter
    from .scraper_adapter import ScraperAdapter

    registry = AdapterRegistry()
    for adapter_class in (FeedAdapter, ApiAdapter, ScraperAdapter):
        registry.register(adapter_class(timeout=timeout, user_agent=user_agent, transport=transport))
    return registry
