"""
Tests for settings loaded from the environment.
"""

import logging
import pytest
from simulator.config import Settings, load_settings, setup_logging
from simulator.difficulty import DifficultyConfig


class TestLoadSettings:

    def test_defaults(self):
        s = load_settings({})
        assert s == Settings()
        assert s.difficulty == DifficultyConfig(major_zeros=4, minor_max=15, max_nonce=None)

    def test_overrides(self):
        s = load_settings({
            "DIFFICULTY_MAJOR": "2",
            "DIFFICULTY_MINOR": "7",
            "MAXIMUM_NONCE": "100",
            "CHAIN_COUNT": "1",
            "CHAIN_LENGTH": "4",
            "LOG_LEVEL": "debug",
        })
        assert s.difficulty == DifficultyConfig(major_zeros=2, minor_max=7, max_nonce=100)
        assert (s.chain_count, s.chain_length, s.log_level) == (1, 4, "DEBUG")

    def test_empty_values_use_defaults(self):
        assert load_settings({"MAXIMUM_NONCE": ""}).difficulty.max_nonce is None

    @pytest.mark.parametrize("env", [
        {"DIFFICULTY_MAJOR": "-1"},
        {"DIFFICULTY_MINOR": "16"},
        {"DIFFICULTY_MINOR": "-1"},
        {"MAXIMUM_NONCE": "-5"},
        {"CHAIN_COUNT": "0"},
        {"CHAIN_LENGTH": "0"},
        {"DIFFICULTY_MAJOR": "four"},
    ])
    def test_invalid_values_rejected(self, env):
        with pytest.raises(ValueError):
            load_settings(env)

    def test_settings_frozen(self):
        s = load_settings({})
        with pytest.raises(AttributeError):
            s.chain_count = 9


def test_setup_logging_accepts_unknown_level():
    setup_logging("NOT_A_LEVEL")
    assert logging.getLogger().handlers
