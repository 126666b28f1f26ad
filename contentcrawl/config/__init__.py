"""Configuration management for the content crawler."""

from .loader import Config, load_config, load_sources, save_config, save_sources
from .models import ConfigModel, CrawlerConfig, LoggingConfig, PostgresConfig, SourceConfig

__all__ = [
    "Config",
    "ConfigModel",
    "CrawlerConfig",
    "LoggingConfig",
    "PostgresConfig",
    "SourceConfig",
    "load_config",
    "load_sources",
    "save_config",
    "save_sources",
]
