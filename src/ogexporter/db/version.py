"""Short version extraction from ``SELECT version()`` output."""

from __future__ import annotations

import re

_GAUSSDB_KERNEL_RE = re.compile(r"(GaussDB|MogDB|Uqbar)\s+Kernel\s+V(\w+)")
_GAUSSDB_KERNEL_NUMERIC_RE = re.compile(r"(GaussDB|MogDB|Uqbar)\s+Kernel\s+(\d+\.\d+.\d+)")
_OPENGAUSS_RE = re.compile(r"(openGauss|MogDB|Uqbar)\s+(\d+\.\d+.\d+)")
_VASTBASE_RE = re.compile(r"(Vastbase\s+G100)\s+V(\d+\.\d+)")
_POSTGRES_RE = re.compile(r"PostgreSQL\s+(\d+(?:\.\d+){0,2})")
_RELEASE_RE = re.compile(r"(\d+)R(\d+)C(\d+)")

UNKNOWN_VERSION = "0.0.0"


def _gaussdb_release(release: str) -> str:
    # V500R001C10 -> 500.1.10
    match = _RELEASE_RE.search(release)
    if not match:
        return ""
    major, minor, patch = (int(part) for part in match.groups())
    return f"{major}.{minor}.{patch}"


def parse_version(version_string: str) -> str:
    """
    Extract the short version from a server banner.

    Returns "" when no known product version is found.
    """
    text = version_string.strip()

    if match := _GAUSSDB_KERNEL_RE.search(text):
        return _gaussdb_release(match.group(2))
    if match := _GAUSSDB_KERNEL_NUMERIC_RE.search(text):
        return match.group(2)
    if match := _OPENGAUSS_RE.search(text):
        return match.group(2)
    if match := _VASTBASE_RE.search(text):
        return match.group(2)
    if match := _POSTGRES_RE.search(text):
        return match.group(1)
    return ""
