"""Tests for configuration loading.

Verifies precedence (packaged defaults < override file < environment), strict
key checking, type coercion and the effective-settings checksum.
"""
from __future__ import annotations

import pytest
import yaml

from wholesale_config import get_active_config
from wholesale_config.loader import compute_checksum, parse_config
from wholesale_config.schema import AppConfig, PlatformSettings


def _write(tmp_path, data) -> str:
    path = tmp_path / "overrides.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestDefaults:

    def test_packaged_defaults(self):
        config = get_active_config(environ={})

        assert config.database.url == "sqlite:///wholesale.db"
        assert config.platform.api_version == "2024-01"
        assert config.platform.max_attempts == 4
        assert config.platform.timeout_seconds == 30.0
        assert config.reconciliation.recency_days == 90
        assert config.reconciliation.batch_limit == 50
        assert config.order_numbers.immediate_prefix == "A"
        assert config.order_numbers.pre_order_prefix == "P"
        assert config.order_numbers.start == 10001
        assert config.lifecycle.trash_retention_days == 30

    def test_platform_not_configured_by_default(self):
        assert get_active_config(environ={}).platform.is_configured is False

    def test_defaults_match_dataclass_defaults(self):
        config = get_active_config(environ={})
        assert config.checksum == compute_checksum(AppConfig())


class TestOverrides:

    def test_override_file(self, tmp_path):
        path = _write(tmp_path, {
            "order_numbers": {"immediate_prefix": "W", "start": 500},
            "reconciliation": {"batch_limit": 10},
        })

        config = get_active_config(path, environ={})

        assert config.order_numbers.immediate_prefix == "W"
        assert config.order_numbers.start == 500
        assert config.order_numbers.pre_order_prefix == "P"
        assert config.reconciliation.batch_limit == 10
        assert config.reconciliation.recency_days == 90

    def test_override_file_from_environment(self, tmp_path):
        path = _write(tmp_path, {"lifecycle": {"trash_retention_days": 7}})

        config = get_active_config(environ={"WHOLESALE_CONFIG": path})

        assert config.lifecycle.trash_retention_days == 7

    def test_environment_wins_over_file(self, tmp_path):
        path = _write(tmp_path, {"platform": {"store_domain": "file.myshopify.com"}})

        config = get_active_config(path, environ={
            "COMMERCE_STORE_DOMAIN": "env.myshopify.com",
            "COMMERCE_ACCESS_TOKEN": "shpat_env",
            "WHOLESALE_DATABASE_URL": "postgresql://localhost/wholesale",
        })

        assert config.platform.store_domain == "env.myshopify.com"
        assert config.platform.is_configured
        assert config.database.url == "postgresql://localhost/wholesale"

    def test_empty_environment_values_ignored(self):
        config = get_active_config(environ={"COMMERCE_API_VERSION": ""})
        assert config.platform.api_version == "2024-01"

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml", environ={})


class TestValidation:

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(tmp_path, {"reconciliation": {"batch_limt": 10}})

        with pytest.raises(ValueError, match="Unknown setting"):
            get_active_config(path, environ={})

    def test_wrong_type_rejected(self, tmp_path):
        path = _write(tmp_path, {"database": {"echo": "sometimes"}})

        with pytest.raises(ValueError):
            get_active_config(path, environ={})

    def test_numeric_strings_coerced(self):
        config = parse_config({
            "platform": {"max_attempts": "6", "timeout_seconds": "12.5"},
            "database": {"echo": "true"},
        })

        assert config.platform.max_attempts == 6
        assert config.platform.timeout_seconds == 12.5
        assert config.database.echo is True


class TestChecksum:

    def test_checksum_is_deterministic(self, tmp_path):
        path = _write(tmp_path, {"reconciliation": {"batch_limit": 10}})
        assert get_active_config(path, environ={}).checksum == get_active_config(path, environ={}).checksum

    def test_checksum_changes_with_settings(self, tmp_path):
        path = _write(tmp_path, {"reconciliation": {"batch_limit": 10}})
        assert get_active_config(path, environ={}).checksum != get_active_config(environ={}).checksum

    def test_load_is_logged(self, captured_logs):
        config = get_active_config(environ={})

        loaded = [r for r in captured_logs() if r["message"] == "wholesale_config_loaded"]
        assert loaded[-1]["checksum"] == config.checksum
        assert loaded[-1]["platform_configured"] is False


class TestPlatformSettings:

    def test_base_url(self):
        settings = PlatformSettings(store_domain="https://shop.myshopify.com/", access_token="t")
        assert settings.base_url == "https://shop.myshopify.com/admin/api/2024-01"

    def test_needs_domain_and_token(self):
        assert not PlatformSettings(store_domain="shop.myshopify.com").is_configured
        assert not PlatformSettings(access_token="t").is_configured
