"""
Tests for credential resolution and query parsing
"""

import argparse
from pathlib import Path
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from keepassx_cli.config import Settings
from keepassx_cli.credentials import (
    CredentialResolver,
    clear_keyring_password,
    get_keyring_password,
    normalize_key,
)
from keepassx_cli.exceptions import (
    CredentialError,
    DatabaseNotFoundError,
    MissingAttachmentArgumentsError,
    MissingDatabaseError,
    NoPasswordSourceError,
    ProfileNotFoundError,
    UsageError,
)
from keepassx_cli.profiles import ProfileStore


@pytest.fixture
def database(tmp_path: Path) -> Path:
    db = tmp_path / "vault.kdbx"
    db.write_bytes(b"kdbx")
    return db


@pytest.fixture
def store(tmp_path: Path, database: Path) -> ProfileStore:
    store = ProfileStore(tmp_path / "conf")
    store.create("demo", str(database))
    store.update_password("demo", "stored")
    store.create("bare", str(database))
    return store


def make_settings(store: ProfileStore, **overrides) -> Settings:
    values = dict(conf_dir=store.conf_dir)
    values.update(overrides)
    return Settings(**values)


class TestNormalizeKey:
    """Test normalize_key function"""

    def test_collapses_spaced_separators(self):
        assert normalize_key("A / B / C") == "A/B/C"

    def test_is_idempotent(self):
        once = normalize_key("A / B / C")
        assert normalize_key(once) == once == "A/B/C"

    def test_keeps_spaces_inside_names(self):
        assert normalize_key("My Group / My Entry") == "My Group/My Entry"


class TestQueryParsing:
    """Test [PROFILE] KEY... parsing"""

    def test_first_token_naming_profile_is_consumed(self, store):
        resolver = CredentialResolver(make_settings(store), store)
        assert resolver.parse_query(["demo", "My", "Entry"]) == ("demo", "My Entry")

    def test_without_profile_all_tokens_form_key(self, store):
        resolver = CredentialResolver(make_settings(store), store)
        assert resolver.parse_query(["Cloud", "/", "AWS"]) == (None, "Cloud/AWS")

    def test_double_underscore_prefix(self, store):
        resolver = CredentialResolver(make_settings(store), store)
        assert resolver.parse_query(["demo__MyEntry"]) == ("demo", "MyEntry")
        assert resolver.parse_query(["other__MyEntry"]) == (None, "other__MyEntry")

    def test_profile_flag_disables_detection(self, store):
        settings = make_settings(store, profile="bare", profile_from_flag=True)
        resolver = CredentialResolver(settings, store)
        assert resolver.parse_query(["demo", "Entry"]) == (None, "demo Entry")

    def test_key_flag_wins_over_tokens(self, store):
        settings = make_settings(store, key="A / B", key_from_flag=True)
        resolver = CredentialResolver(settings, store)
        assert resolver.parse_query(["demo", "ignored"]) == ("demo", "A/B")

    def test_default_key_only_fills_required_keys(self, store):
        settings = make_settings(store, key="MyEntry")
        resolver = CredentialResolver(settings, store)
        assert resolver.parse_query(["demo"]) == ("demo", "MyEntry")
        assert resolver.parse_query(["demo"], use_default_key=False) == ("demo", "")
        assert resolver.parse_query(["demo", "Web"], use_default_key=False) == (
            "demo",
            "Web",
        )

    def test_attachment_query(self, store):
        resolver = CredentialResolver(make_settings(store), store)
        assert resolver.parse_attachment_query(["demo", "My", "Entry", "id.pem"]) == (
            "demo",
            "My Entry",
            "id.pem",
        )

    def test_attachment_query_needs_two_tokens(self, store):
        resolver = CredentialResolver(make_settings(store), store)
        with pytest.raises(MissingAttachmentArgumentsError):
            resolver.parse_attachment_query(["demo", "MyEntry"])
        with pytest.raises(MissingAttachmentArgumentsError):
            resolver.parse_attachment_query([])


class TestResolve:
    """Test the resolution order"""

    def test_profile_password(self, store, database):
        resolver = CredentialResolver(make_settings(store), store)
        session = resolver.resolve(["demo", "MyEntry"])
        assert session.profile_name == "demo"
        assert session.db_path == str(database)
        assert session.password == "stored"
        assert session.key_query == "MyEntry"
        assert session.no_prompt is False

    def test_flag_password_beats_profile_password(self, store):
        settings = make_settings(store, password="explicit")
        session = CredentialResolver(settings, store).resolve(["demo", "MyEntry"])
        assert session.password == "explicit"

    def test_db_flag_beats_profile(self, store, tmp_path):
        other = tmp_path / "other.kdbx"
        other.write_bytes(b"kdbx")
        settings = make_settings(store, db=str(other))
        session = CredentialResolver(settings, store).resolve(["demo", "MyEntry"])
        assert session.db_path == str(other)

    def test_environment_profile_is_used(self, store):
        settings = make_settings(store, profile="demo")
        session = CredentialResolver(settings, store).resolve(["MyEntry"])
        assert session.profile_name == "demo"

    def test_unknown_selected_profile(self, store):
        settings = make_settings(store, profile="ghost", profile_from_flag=True)
        with pytest.raises(ProfileNotFoundError):
            CredentialResolver(settings, store).resolve(["MyEntry"])

    def test_missing_key(self, store):
        with pytest.raises(UsageError):
            CredentialResolver(make_settings(store), store).resolve(["demo"])

    def test_environment_key_ignored_for_optional_key(self, store):
        settings = make_settings(store, key="MyEntry")
        resolver = CredentialResolver(settings, store)
        assert resolver.resolve(["demo"]).key_query == "MyEntry"
        assert resolver.resolve(["demo"], require_key=False).key_query == ""

    def test_missing_database(self, store):
        with pytest.raises(MissingDatabaseError):
            CredentialResolver(make_settings(store), store).resolve(["MyEntry"])

    @patch("keepassx_cli.credentials.prompt_secret")
    def test_database_checked_before_prompt(self, mock_prompt, store, tmp_path):
        settings = make_settings(store, db=str(tmp_path / "missing.kdbx"))
        with pytest.raises(DatabaseNotFoundError):
            CredentialResolver(settings, store).resolve(["MyEntry"])
        mock_prompt.assert_not_called()

    @patch("keepassx_cli.credentials.keyring.get_password", return_value="from-keyring")
    def test_keyring_used_when_enabled(self, mock_get, store):
        settings = make_settings(store, keyring=True)
        session = CredentialResolver(settings, store).resolve(["bare", "MyEntry"])
        assert session.password == "from-keyring"
        mock_get.assert_called_once_with("keepassx-cli", "bare")

    @patch("keepassx_cli.credentials.keyring.get_password")
    @patch("keepassx_cli.credentials.prompt_secret", return_value="typed")
    def test_keyring_skipped_when_disabled(self, mock_prompt, mock_get, store):
        session = CredentialResolver(make_settings(store), store).resolve(
            ["bare", "MyEntry"]
        )
        assert session.password == "typed"
        mock_get.assert_not_called()

    @patch("keepassx_cli.credentials.keyring.get_password", return_value=None)
    @patch("keepassx_cli.credentials.prompt_secret", return_value="typed")
    def test_prompt_after_empty_keyring(self, mock_prompt, mock_get, store):
        settings = make_settings(store, keyring=True)
        session = CredentialResolver(settings, store).resolve(["bare", "MyEntry"])
        assert session.password == "typed"
        mock_prompt.assert_called_once()

    @patch("keepassx_cli.credentials.prompt_secret")
    def test_no_prompt_fails(self, mock_prompt, store):
        settings = make_settings(store, prompt=False)
        with pytest.raises(NoPasswordSourceError):
            CredentialResolver(settings, store).resolve(["bare", "MyEntry"])
        mock_prompt.assert_not_called()

    @patch("keepassx_cli.credentials.prompt_secret", side_effect=EOFError)
    def test_cancelled_prompt_fails(self, mock_prompt, store):
        with pytest.raises(CredentialError, match="Could not read password"):
            CredentialResolver(make_settings(store), store).resolve(["bare", "MyEntry"])


class TestKeyringHelpers:
    """Test keyring wrappers"""

    @patch("keepassx_cli.credentials.keyring.get_password", side_effect=KeyringError("locked"))
    def test_lookup_errors_fall_through(self, mock_get, caplog):
        assert get_keyring_password("demo") is None
        assert "locked" in caplog.text

    @patch(
        "keepassx_cli.credentials.keyring.delete_password",
        side_effect=PasswordDeleteError("missing"),
    )
    def test_clearing_missing_entry_is_quiet(self, mock_delete):
        clear_keyring_password("demo")
        mock_delete.assert_called_once_with("keepassx-cli", "demo")


class TestSettings:
    """Test Settings.from_args"""

    def _args(self, **kwargs) -> argparse.Namespace:
        defaults = dict(
            profile=None,
            key=None,
            db=None,
            password=None,
            conf=None,
            keyring=None,
            prompt=None,
            force=False,
            verbose=0,
            command="get",
            arguments=["X"],
        )
        defaults.update(kwargs)
        return argparse.Namespace(**defaults)

    def test_environment_defaults(self, tmp_path):
        env = {
            "KEEPASSX_CLI__PROFILE": "demo",
            "KEEPASSX_CLI__KEY": "Entry",
            "KEEPASSX_CLI__DB": "/db.kdbx",
            "KEEPASSX_CLI__PASS": "envpass",
            "KEEPASSX_CLI__CONF": str(tmp_path),
            "KEEPASSX_CLI__KEYRING": "true",
            "KEEPASSX_CLI__NO_PROMPT": "1",
        }
        settings = Settings.from_args(self._args(), env)
        assert settings.profile == "demo"
        assert settings.profile_from_flag is False
        assert settings.key == "Entry"
        assert settings.key_from_flag is False
        assert settings.db == "/db.kdbx"
        assert settings.password == "envpass"
        assert settings.password_from_flag is False
        assert settings.conf_dir == tmp_path
        assert settings.keyring is True
        assert settings.prompt is False
        assert settings.arguments == ("X",)

    def test_flags_override_environment(self, tmp_path):
        env = {
            "KEEPASSX_CLI__PROFILE": "demo",
            "KEEPASSX_CLI__PASS": "envpass",
            "KEEPASSX_CLI__KEYRING": "true",
            "KEEPASSX_CLI__NO_PROMPT": "1",
        }
        args = self._args(
            profile="work",
            password="flagpass",
            keyring="false",
            prompt=True,
            conf=str(tmp_path),
        )
        settings = Settings.from_args(args, env)
        assert settings.profile == "work"
        assert settings.profile_from_flag is True
        assert settings.password == "flagpass"
        assert settings.password_from_flag is True
        assert settings.keyring is False
        assert settings.prompt is True

    def test_default_conf_dir_uses_xdg(self, tmp_path):
        settings = Settings.from_args(self._args(), {"XDG_CONFIG_HOME": str(tmp_path)})
        assert settings.conf_dir == tmp_path / "keepassx-cli"

    def test_invalid_keyring_value(self):
        with pytest.raises(UsageError, match="--keyring"):
            Settings.from_args(self._args(keyring="maybe"), {})

    def test_password_hidden_from_repr(self, tmp_path):
        settings = Settings.from_args(self._args(password="hunter2"), {})
        assert "hunter2" not in repr(settings)
