"""Database management for the content crawler."""

from .connection import create_pool
from .contents import ContentStorage
from .init import init_database, validate_connection
from .metrics import MetricsStore
from .sources import SourceRegistry
from .state import CrawlerState

__all__ = [
    "ContentStorage",
    "CrawlerState",
    "MetricsStore",
    "SourceRegistry",
    "create_pool",
    "init_database",
    "validate_connection",
]
