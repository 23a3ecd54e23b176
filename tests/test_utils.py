"""
Tests for trellis.utils and the config loader in trellis.constants.
"""

import json
import logging
from datetime import datetime, timedelta

from trellis.constants import (
    DEFAULT_LOCK_STALE_MINUTES,
    UID_ALPHABET,
    ConfigManager,
    get_config_manager,
    get_lock_stale_minutes,
    get_user_names,
)
from trellis.utils import format_age, format_timestamp, generate_uid, setup_logging


def _write_config(data_dir, **values):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "config.json").write_text(json.dumps(values))
    get_config_manager().reload()


class TestGenerateUid:
    """Tests for id generation."""

    def test_default_length(self):
        uid = generate_uid()
        assert len(uid) == 20
        assert set(uid) <= set(UID_ALPHABET)

    def test_explicit_length(self):
        assert len(generate_uid(6)) == 6

    def test_configured_length(self, data_dir):
        _write_config(data_dir, uid_length=8)
        assert len(generate_uid()) == 8

    def test_ids_differ(self):
        assert len({generate_uid() for _ in range(50)}) == 50


class TestFormatting:
    """Tests for display helpers."""

    def test_format_timestamp(self):
        assert format_timestamp(datetime(2024, 4, 1, 9, 5, 7)) == "2024-04-01 09:05:07"

    def test_format_timestamp_none(self):
        assert format_timestamp(None) == ""

    def test_format_timestamp_uses_config(self, data_dir):
        _write_config(data_dir, timestamp_format="%d/%m/%Y")
        assert format_timestamp(datetime(2024, 4, 1)) == "01/04/2024"

    def test_format_age_rounds_down(self):
        assert format_age(timedelta(minutes=3, seconds=59)) == "3 min"


class TestConfigManager:
    """Tests for config loading with fallback to defaults."""

    def test_defaults_without_file(self):
        assert get_lock_stale_minutes() == DEFAULT_LOCK_STALE_MINUTES
        assert get_user_names() == {}

    def test_values_from_file(self, data_dir):
        _write_config(data_dir, lock_stale_minutes=3, user_names={"u1": "Alice"})
        assert get_lock_stale_minutes() == 3
        assert get_user_names() == {"u1": "Alice"}

    def test_corrupt_file_falls_back(self, data_dir):
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / "config.json").write_text("{not json")
        manager = ConfigManager(data_dir=data_dir)
        assert manager.get_int("lock_stale_minutes", 10) == 10

    def test_explicit_path_wins(self, temp_dir, data_dir):
        path = temp_dir / "custom.json"
        manager = ConfigManager(config_path=path, data_dir=data_dir)
        assert manager.config_path == path


class TestSetupLogging:
    """Tests for logger configuration."""

    def test_single_handler(self):
        setup_logging(logging.INFO)
        logger = setup_logging(logging.DEBUG)

        assert logger.name == "trellis"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not logger.propagate
