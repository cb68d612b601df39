"""
og-exporter configuration.

Provides:
- Pydantic-based settings (environment variables, .env files)
- YAML query definition loading with directory merge and priorities
"""

from ogexporter.config.loader import (
    dump_query_table,
    load_query_table,
    parse_query_config,
)
from ogexporter.config.settings import (
    Settings,
    get_settings,
    parse_const_labels,
    parse_listen_address,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "parse_const_labels",
    "parse_listen_address",
    # Loader
    "dump_query_table",
    "load_query_table",
    "parse_query_config",
]
