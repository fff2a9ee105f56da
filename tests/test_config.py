"""
Tests for settings and keystore passphrase resolution
"""

import logging

import pytest
from pydantic import ValidationError

from certsign.core.config import (
    INSECURE_DEFAULT_PASSPHRASE,
    ConfiguredPassphraseSource,
    DefaultPassphraseSource,
    EnvironmentPassphraseSource,
    PassphraseResolver,
    Settings,
)

from .conftest import make_settings


class TestPassphraseResolver:

    def test_environment_takes_precedence(self, tmp_path):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD="from-config")
        resolver = PassphraseResolver.from_settings(settings, environ={"CERT_PWD": "from-env"})

        resolved = resolver.resolve()

        assert resolved.value == "from-env"
        assert resolved.source == "env:CERT_PWD"
        assert resolved.insecure is False

    def test_configuration_used_when_environment_unset(self, tmp_path):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD="from-config")
        resolver = PassphraseResolver.from_settings(settings, environ={})

        resolved = resolver.resolve()

        assert resolved.value == "from-config"
        assert resolved.source == "config:KEYSTORE_PASSWORD"

    def test_empty_environment_value_is_skipped(self, tmp_path):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD="from-config")
        resolver = PassphraseResolver.from_settings(settings, environ={"CERT_PWD": ""})

        assert resolver.resolve().value == "from-config"

    def test_custom_environment_variable_name(self, tmp_path):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD_ENV="SIGNING_PASSPHRASE")
        resolver = PassphraseResolver.from_settings(
            settings,
            environ={"SIGNING_PASSPHRASE": "custom", "CERT_PWD": "ignored"}
        )

        assert resolver.resolve().value == "custom"

    def test_insecure_default_is_flagged_and_logged(self, tmp_path, caplog):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD=None)
        resolver = PassphraseResolver.from_settings(settings, environ={})

        with caplog.at_level(logging.WARNING, logger="certsign.core.config"):
            resolved = resolver.resolve()

        assert resolved.value == INSECURE_DEFAULT_PASSPHRASE
        assert resolved.source == "default"
        assert resolved.insecure is True
        assert "insecure default" in caplog.text

    def test_no_sources_yields_none(self):
        resolver = PassphraseResolver([
            EnvironmentPassphraseSource("CERT_PWD", environ={}),
            ConfiguredPassphraseSource(None),
        ])

        assert resolver.resolve() is None

    def test_default_source_alone(self):
        resolved = PassphraseResolver([DefaultPassphraseSource("fallback")]).resolve()

        assert resolved.value == "fallback"
        assert resolved.insecure is True

    def test_passphrase_not_in_repr(self, tmp_path):
        settings = make_settings(tmp_path / "ks.p12", KEYSTORE_PASSWORD="top-secret")
        resolved = PassphraseResolver.from_settings(settings, environ={}).resolve()

        assert "top-secret" not in repr(resolved)


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.KEY_SIZE == 4096
        assert settings.CERTIFICATE_VALIDITY_DAYS == 3650
        assert settings.KEY_ALIAS == "authorKey"
        assert settings.KEYSTORE_PASSWORD_ENV == "CERT_PWD"
        assert settings.KEYSTORE_PATH.endswith(".cert_keystore.p12")
        assert settings.SERIAL_NUMBER_POLICY == "random"

    def test_rejects_unknown_serial_policy(self, tmp_path):
        with pytest.raises(ValidationError):
            make_settings(tmp_path / "ks.p12", SERIAL_NUMBER_POLICY="sequential")

    def test_rejects_small_key_size(self, tmp_path):
        with pytest.raises(ValidationError):
            make_settings(tmp_path / "ks.p12", KEY_SIZE=512)
