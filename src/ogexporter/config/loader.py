"""
Query definition loading and merging.

A config path is either a single YAML file or a directory. Directory mode
reads every ``*.yaml`` / ``*.yml`` file directly inside it in alphabetical
order; definitions from later files replace earlier ones of the same name.
Definitions without an explicit priority get ``100 + file rank``
(priorities 1-99 are reserved for users).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from ogexporter.core.errors import ConfigurationError, QueryDefinitionError
from ogexporter.metrics.models import QueryDefinition
from ogexporter.metrics.table import QueryTable

logger = structlog.get_logger()

CONFIG_SUFFIXES = (".yaml", ".yml")
DEFAULT_PRIORITY_BASE = 100


def parse_query_config(content: str | bytes, path: str = "") -> dict[str, QueryDefinition]:
    """
    Parse one YAML document into checked query definitions.

    Raises:
        ConfigurationError: If the YAML is malformed or a definition fails its check
    """
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"malformed config: {e}", details={"path": path}) from e

    if not isinstance(data, dict):
        raise ConfigurationError("config must be a mapping of query name to definition", details={"path": path})

    queries: dict[str, QueryDefinition] = {}
    for name, raw in data.items():
        if not isinstance(raw, dict):
            raise ConfigurationError(f"query {name!r} must be a mapping", details={"path": path})
        try:
            definition = QueryDefinition.from_dict(str(name), raw, path=path)
            definition.check()
        except QueryDefinitionError as e:
            raise ConfigurationError(e.message, details={"path": path, **e.details}) from e
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"query {name!r}: {e}", details={"path": path}) from e
        queries[definition.name] = definition
    return queries


def _load_file(path: Path) -> dict[str, QueryDefinition]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"failed reading config file {path}: {e}") from e
    queries = parse_query_config(content, path.name)
    logger.info("loaded_config_file", path=str(path), queries=len(queries))
    return queries


def _load_dir(path: Path) -> dict[str, QueryDefinition]:
    conf_files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix in CONFIG_SUFFIXES)
    logger.info("loading_config_dir", path=str(path), files=len(conf_files))

    queries: dict[str, QueryDefinition] = {}
    query_count = config_count = 0
    for conf in conf_files:
        try:
            file_queries = _load_file(conf)
        except ConfigurationError as e:
            logger.warning("skip_config", path=str(conf), error=e.message)
            continue

        config_count += 1
        for name, definition in file_queries.items():
            query_count += 1
            if definition.priority == 0:
                definition = definition.with_priority(DEFAULT_PRIORITY_BASE + config_count)
            queries[name] = definition

    logger.info("loaded_config_dir", queries=len(queries), query_count=query_count, config_count=config_count)
    return queries


def load_query_table(config_path: str | Path) -> QueryTable:
    """
    Load query definitions from a file or directory.

    Args:
        config_path: YAML file or directory of YAML files

    Returns:
        QueryTable ready to be published

    Raises:
        ConfigurationError: If the path is missing or a single file is invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"invalid config path: {path}", details={"path": str(path)})

    if path.is_dir():
        return QueryTable(_load_dir(path))
    return QueryTable(_load_file(path))


def dump_query_table(table: QueryTable) -> str:
    """Render a table back to YAML, in priority order."""
    data: dict[str, Any] = {name: definition.to_dict() for name, definition in table.items()}
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
