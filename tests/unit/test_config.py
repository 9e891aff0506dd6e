"""
Unit tests for configuration and client registration.

Tests cover:
- Settings defaults and environment overrides
- Unknown data policy overrides
- Process-wide client registration
- Error codes and details
"""

import pytest

from entdoc import Document
from entdoc.client import get_client, is_connected, reset_client, set_client
from entdoc.config import (
    Settings,
    UnknownDataBehavior,
    get_settings,
    get_unknown_data_behavior,
    reset_settings,
    set_unknown_data_behavior,
)
from entdoc.errors import (
    ClientAlreadyConnectedError,
    ClientNotConnectedError,
    EntDocError,
    SchemaError,
    UnknownFieldError,
    UsageError,
    ValidationError,
)
from entdoc.sqlite_client import SqliteClient


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Defaults suit local development."""
        settings = Settings()
        assert settings.database_url == "sqlite://memory"
        assert settings.unknown_data_behavior is UnknownDataBehavior.THROW
        assert settings.sqlite_busy_timeout_ms == 5000

    def test_environment_override(self, monkeypatch):
        """ENTDOC_* environment variables override defaults."""
        monkeypatch.setenv("ENTDOC_UNKNOWN_DATA_BEHAVIOR", "ignore")
        monkeypatch.setenv("ENTDOC_SQLITE_BUSY_TIMEOUT_MS", "100")
        reset_settings()
        settings = get_settings()
        assert settings.unknown_data_behavior is UnknownDataBehavior.IGNORE
        assert settings.sqlite_busy_timeout_ms == 100

    def test_settings_cached(self):
        """get_settings() returns one instance."""
        assert get_settings() is get_settings()


class TestUnknownDataBehavior:
    """Tests for the global unknown data policy."""

    def test_set_returns_previous(self):
        """Setting the policy returns the previous one."""
        previous = set_unknown_data_behavior("accept")
        assert previous is UnknownDataBehavior.THROW
        assert get_unknown_data_behavior() is UnknownDataBehavior.ACCEPT

    def test_invalid_policy(self):
        """Unknown policy names are rejected."""
        with pytest.raises(ValueError):
            set_unknown_data_behavior("explode")


class TestClientRegistration:
    """Tests for set_client/get_client."""

    def test_registered_client(self, client):
        """The test fixture registers a client."""
        assert is_connected()
        assert get_client() is client

    def test_not_connected(self):
        """Using documents without a client raises ClientNotConnectedError."""
        reset_client()
        Orphan = type("Orphan", (Document,), {"SCHEMA": {"name": str}})
        with pytest.raises(ClientNotConnectedError):
            get_client()
        with pytest.raises(ClientNotConnectedError):
            Orphan.create()

    def test_already_connected(self):
        """Registering twice is an error."""
        with pytest.raises(ClientAlreadyConnectedError):
            set_client(SqliteClient(None))

    def test_invalid_client(self):
        """Only DatabaseClient instances can be registered."""
        reset_client()
        with pytest.raises(UsageError):
            set_client(object())

    @pytest.mark.asyncio
    async def test_connect_url(self):
        """connect() parses sqlite URLs and registers the client."""
        reset_client()
        db = await SqliteClient.connect("sqlite://memory")
        assert get_client() is db
        assert db.in_memory

    @pytest.mark.asyncio
    async def test_connect_bad_url(self):
        """Unsupported URLs are rejected."""
        with pytest.raises(UsageError, match="Unrecognized"):
            await SqliteClient.connect("nedb://memory", register=False)

    def test_explicit_client_attribute(self):
        """A CLIENT class attribute overrides the global client."""
        other = SqliteClient(None)
        Pinned = type("Pinned", (Document,), {"SCHEMA": {}, "CLIENT": other})
        assert Pinned.get_client() is other


class TestErrors:
    """Tests for error types."""

    def test_hierarchy(self):
        """All errors derive from EntDocError."""
        for error_type in (
            SchemaError,
            ValidationError,
            UsageError,
            ClientNotConnectedError,
            ClientAlreadyConnectedError,
        ):
            assert issubclass(error_type, EntDocError)

    def test_codes(self):
        """Errors carry stable codes."""
        assert SchemaError("x").code == "SCHEMA_ERROR"
        assert ValidationError("x").code == "VALIDATION_ERROR"
        assert UsageError("x").code == "USAGE_ERROR"
        assert ClientNotConnectedError().code == "NOT_CONNECTED"

    def test_unknown_field_message(self):
        """Unknown field errors list suggestions."""
        error = UnknownFieldError("nmae", "User", ["name"])
        assert error.message == "Unknown key 'nmae' in data object for new User instance. Did you mean: name?"
        assert error.details["suggestions"] == ["name"]

    def test_validation_details(self):
        """Validation errors expose class and field."""
        error = ValidationError("bad", class_name="User", field_name="age")
        assert error.details == {"class_name": "User", "field": "age"}
