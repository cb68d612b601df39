"""Tests for core/errors.py."""

from ogexporter.core.errors import (
    ConfigurationError,
    DatabaseError,
    ExitCode,
    ExporterError,
    QueryDefinitionError,
    UnexpectedValueError,
    main_with_error_handling,
)


class TestExitCodes:
    def test_exit_codes(self):
        assert ExitCode.SUCCESS == 0
        assert ConfigurationError("x").exit_code == ExitCode.CONFIG_ERROR
        assert DatabaseError("x").exit_code == ExitCode.DATABASE_ERROR
        assert QueryDefinitionError("x").exit_code == ExitCode.DEFINITION_ERROR
        assert ExporterError("x").exit_code == ExitCode.UNKNOWN_ERROR

    def test_unexpected_value_details(self):
        error = UnexpectedValueError("pg_database_numbackends", "numbackends", "bad")

        assert error.details == {"metric": "pg_database_numbackends", "column": "numbackends"}
        assert "'bad'" in error.message


class TestMainWithErrorHandling:
    """Tests for the main_with_error_handling decorator."""

    def test_success(self):
        @main_with_error_handling
        def main():
            return 0

        assert main() == 0

    def test_exporter_error(self):
        @main_with_error_handling
        def main():
            raise DatabaseError("cannot reach database", details={"server": "db:5432"})

        assert main() == ExitCode.DATABASE_ERROR

    def test_keyboard_interrupt(self):
        @main_with_error_handling
        def main():
            raise KeyboardInterrupt

        assert main() == ExitCode.INTERRUPTED == 130

    def test_unexpected_error(self):
        @main_with_error_handling
        def main():
            raise RuntimeError("boom")

        assert main() == ExitCode.UNKNOWN_ERROR

    def test_wraps_signature(self):
        @main_with_error_handling
        def main(argv=None):
            """Entry point."""
            return len(argv or [])

        assert main(["--dry-run"]) == 1
        assert main.__doc__ == "Entry point."
        assert main.__name__ == "main"
