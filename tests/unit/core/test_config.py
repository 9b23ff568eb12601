"""
Unit tests for configuration loading.
"""

import pytest
import yaml
from pydantic import ValidationError

from docingest.core.config import (
    ConfigManager,
    IngestionConfig,
    MemorySettings,
    RetrySettings,
    StorageSettings,
)
from docingest.core.resilience import RetryPolicy
from docingest.monitoring.memory import MB


class TestConfigurationModels:
    """Test Pydantic configuration model validation."""

    def test_defaults(self):
        config = IngestionConfig()

        assert config.retry.max_retries == 3
        assert config.retry.base_delay == 1.0
        assert config.circuit_breaker.failure_threshold == 5
        assert config.circuit_breaker.reset_timeout == 60.0
        assert config.chunking.max_tokens == 1000
        assert config.chunking.overlap_tokens == 100
        assert config.memory.default_batch_size == 10
        assert config.processing.max_processing_time == 300.0
        assert config.storage.backend == "sqlite"
        assert config.log_level == "WARNING"

    def test_retry_settings_to_policy(self):
        policy = RetrySettings(max_retries=5, base_delay=0.5, jitter=False).to_policy()

        assert isinstance(policy, RetryPolicy)
        assert policy.max_retries == 5
        assert policy.base_delay == 0.5
        assert policy.jitter is False

    def test_memory_settings_to_controller(self):
        controller = MemorySettings(max_heap_mb=1024, default_batch_size=20).to_controller(batch_delay=0.0)

        assert controller.max_heap_bytes == 1024 * MB
        assert controller.default_batch_size == 20
        assert controller.batch_delay == 0.0

    def test_validation_errors(self):
        with pytest.raises(ValidationError):
            RetrySettings(max_retries=-1)

        with pytest.raises(ValidationError):
            MemorySettings(warning_threshold=0.8, critical_threshold=0.5)

        with pytest.raises(ValidationError):
            MemorySettings(min_batch_size=20, default_batch_size=10)

        with pytest.raises(ValidationError):
            StorageSettings(backend="postgres")

        with pytest.raises(ValidationError):
            IngestionConfig(log_level="LOUD")

    def test_log_level_normalized(self):
        assert IngestionConfig(log_level="debug").log_level == "DEBUG"

    def test_database_path_expanded(self):
        assert "~" not in StorageSettings(database_path="~/jobs.db").database_path


class TestConfigManager:
    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({
            'retry': {'max_retries': 5},
            'chunking': {'max_tokens': 500}
        }))

        config = ConfigManager(str(config_file)).load_config(from_env=False)

        assert config.retry.max_retries == 5
        assert config.chunking.max_tokens == 500
        assert config.chunking.overlap_tokens == 100

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.yaml")).load_config(from_env=False)

        assert config == IngestionConfig()

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({'retry': {'max_retries': 5, 'base_delay': 2.0}}))

        monkeypatch.setenv("DOCINGEST_MAX_RETRIES", "7")
        monkeypatch.setenv("DOCINGEST_RETRY_JITTER", "false")
        monkeypatch.setenv("DOCINGEST_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("DOCINGEST_MAX_PROCESSING_TIME", "12.5")

        config = ConfigManager(str(config_file)).load_config()

        assert config.retry.max_retries == 7
        assert config.retry.base_delay == 2.0
        assert config.retry.jitter is False
        assert config.storage.backend == "memory"
        assert config.processing.max_processing_time == 12.5

    def test_invalid_environment_value_raises(self, monkeypatch):
        monkeypatch.setenv("DOCINGEST_FAILURE_THRESHOLD", "0")

        with pytest.raises(ValidationError):
            ConfigManager().load_config()

    def test_non_mapping_file_rejected(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            ConfigManager(str(config_file)).load_config(from_env=False)

    def test_convert_env_value(self):
        manager = ConfigManager()

        assert manager._convert_env_value("true") is True
        assert manager._convert_env_value("FALSE") is False
        assert manager._convert_env_value("42") == 42
        assert manager._convert_env_value("0.25") == 0.25
        assert manager._convert_env_value("/tmp/jobs.db") == "/tmp/jobs.db"

    def test_merge_configs_is_deep(self):
        merged = ConfigManager()._merge_configs(
            {'retry': {'max_retries': 1, 'base_delay': 2.0}},
            {'retry': {'max_retries': 4}}
        )

        assert merged == {'retry': {'max_retries': 4, 'base_delay': 2.0}}

    def test_save_and_reload(self, tmp_path):
        manager = ConfigManager()
        manager.load_config(from_env=False)
        target = tmp_path / "saved" / "config.yaml"

        manager.save_config(str(target))
        reloaded = ConfigManager(str(target)).load_config(from_env=False)

        assert reloaded == manager.get_config()
