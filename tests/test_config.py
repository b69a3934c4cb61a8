"""
Configuration tests: defaults, environment overrides, YAML loading, validation.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest
import yaml

from soulforge.config import (
    ConfigError,
    ForgeConfig,
    ValidationError,
    apply_dict,
    get_config,
    get_config_manager,
)
from soulforge.constants import U64_MAX


class TestConfigValues:
    """Tests for individual configuration values."""

    def test_defaults(self):
        config = ForgeConfig()

        assert config.ledger.cluster.get() == "mainnet-beta"
        assert config.ledger.endpoint() == "https://api.mainnet-beta.solana.com"
        assert config.coordinator.commitment.get() == "confirmed"
        assert config.coordinator.confirmation_timeout_seconds.get() == 60.0
        assert config.coordinator.max_raw_amount.get() == U64_MAX
        assert config.coordinator.check_payer_balance.get() is True
        assert config.coordinator.skip_preflight.get() is False

    def test_rpc_url_override(self):
        config = ForgeConfig()
        config.ledger.rpc_url.set("http://localhost:8899")
        assert config.ledger.endpoint() == "http://localhost:8899"

    def test_environment_takes_precedence(self, monkeypatch):
        config = ForgeConfig()
        config.coordinator.confirmation_timeout_seconds.set(5.0)

        monkeypatch.setenv("SOULFORGE_CONFIRM_TIMEOUT", "12.5")
        monkeypatch.setenv("SOULFORGE_SKIP_PREFLIGHT", "yes")
        monkeypatch.setenv("SOULFORGE_CLUSTER", "devnet")

        assert config.coordinator.confirmation_timeout_seconds.get() == 12.5
        assert config.coordinator.skip_preflight.get() is True
        assert config.ledger.endpoint() == "https://api.devnet.solana.com"

    def test_invalid_environment_value_rejected(self, monkeypatch):
        config = ForgeConfig()

        monkeypatch.setenv("SOULFORGE_CLUSTER", "mainnet")
        with pytest.raises(ValidationError, match="SOULFORGE_CLUSTER"):
            config.ledger.cluster.get()

        monkeypatch.setenv("SOULFORGE_CONFIRM_TIMEOUT", "soon")
        with pytest.raises(ValidationError, match="SOULFORGE_CONFIRM_TIMEOUT"):
            config.coordinator.confirmation_timeout_seconds.get()

    def test_processed_commitment_rejected(self):
        with pytest.raises(ValidationError):
            ForgeConfig().coordinator.commitment.set("processed")

    def test_unknown_cluster_rejected(self):
        with pytest.raises(ValidationError):
            ForgeConfig().ledger.cluster.set("moonnet")

    def test_max_raw_amount_bounded_by_u64(self):
        with pytest.raises(ValidationError):
            ForgeConfig().coordinator.max_raw_amount.set(U64_MAX + 1)

    def test_change_callback(self):
        config = ForgeConfig()
        changes = []
        config.coordinator.poll_interval_seconds.on_change(lambda old, new: changes.append((old, new)))

        config.coordinator.poll_interval_seconds.set(0.5)
        assert changes == [(None, 0.5)]

    def test_reset_value(self):
        config = ForgeConfig()
        config.coordinator.poll_interval_seconds.set(0.5)
        config.coordinator.poll_interval_seconds.reset()
        assert config.coordinator.poll_interval_seconds.get() == 1.0


class TestConfigManager:
    """Tests for the configuration manager singleton."""

    def test_singleton(self):
        assert get_config_manager() is get_config_manager()
        assert get_config() is get_config_manager().config

    def test_set_and_get_by_path(self):
        manager = get_config_manager()
        manager.set("coordinator.confirmation_timeout_seconds", 30.0)
        assert manager.get("coordinator.confirmation_timeout_seconds") == 30.0

    def test_invalid_path(self):
        manager = get_config_manager()
        with pytest.raises(ConfigError):
            manager.get("coordinator.nonexistent")
        with pytest.raises(ConfigError):
            manager.set("coordinator", 1)

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "soulforge.yaml"
        path.write_text(yaml.dump({
            "ledger": {"cluster": "devnet"},
            "coordinator": {"commitment": "finalized", "poll_interval_seconds": 0.25},
        }))

        manager = get_config_manager()
        manager.load_from_file(path)

        assert get_config().ledger.cluster.get() == "devnet"
        assert get_config().coordinator.commitment.get() == "finalized"
        assert get_config().coordinator.poll_interval_seconds.get() == 0.25

    def test_load_defaults_from_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "soulforge.yaml").write_text("observability:\n  log_format: text\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))

        loaded = get_config_manager().load_defaults()

        assert [p.name for p in loaded] == ["soulforge.yaml"]
        assert get_config().observability.log_format.get() == "text"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(tmp_path / "absent.yaml")

    def test_unknown_key_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("coordinator:\n  retries: 3\n")
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(path)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(path)

    def test_validate_reports_bad_environment(self, monkeypatch):
        monkeypatch.setenv("SOULFORGE_COMMITMENT", "processed")
        errors = get_config_manager().validate()
        assert any(e.startswith("coordinator.commitment") for e in errors)

    def test_validate_clean(self):
        assert get_config_manager().validate() == []

    def test_reset(self):
        manager = get_config_manager()
        manager.set("ledger.cluster", "testnet")
        manager.reset()
        assert manager.get("ledger.cluster") == "mainnet-beta"


def test_to_yaml_round_trip():
    config = ForgeConfig()
    config.ledger.cluster.set("localnet")

    restored = ForgeConfig()
    apply_dict(restored, yaml.safe_load(config.to_yaml()))

    assert restored.to_dict() == config.to_dict()
    assert restored.ledger.endpoint() == "http://127.0.0.1:8899"
