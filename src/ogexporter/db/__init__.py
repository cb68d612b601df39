"""Target database access."""

from ogexporter.db.session import BaseInfo, dispose_engine, fetch_base_info, init_engine
from ogexporter.db.version import parse_version

__all__ = ["BaseInfo", "dispose_engine", "fetch_base_info", "init_engine", "parse_version"]
