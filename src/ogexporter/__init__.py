"""
og-exporter: Prometheus exporter for openGauss and PostgreSQL-compatible databases.

Runs YAML-declared SQL queries on every scrape and maps the result rows
onto typed, labeled Prometheus samples.
"""

__version__ = "0.1.0"
