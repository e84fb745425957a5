"""Tests for HelperConfig."""

import os

import pytest


class TestHelperConfig:
    """Tests for reading typed values from the environment."""

    def test_string_and_default(self, env, helper_config):
        env.setenv("SOME_NAME", "  padded  ")

        assert helper_config.get_string_val("some_name") == "padded"
        assert helper_config.get_string_val("MISSING_NAME", default="fallback") == "fallback"

    def test_missing_without_default_raises(self, helper_config):
        with pytest.raises(ValueError, match="MISSING_NAME"):
            helper_config.get_string_val("MISSING_NAME")

    def test_numbers(self, env, helper_config):
        env.setenv("AN_INT", "5")
        env.setenv("A_FLOAT", "0.3")
        env.setenv("NOT_A_NUMBER", "five")

        assert helper_config.get_number_val("AN_INT") == 5
        assert helper_config.get_number_val("A_FLOAT") == 0.3
        with pytest.raises(ValueError, match="not a valid number"):
            helper_config.get_number_val("NOT_A_NUMBER")

    def test_bools(self, env, helper_config):
        env.setenv("FLAG_ON", "Yes")
        env.setenv("FLAG_OFF", "0")

        assert helper_config.get_bool_val("FLAG_ON") is True
        assert helper_config.get_bool_val("FLAG_OFF") is False
        assert helper_config.get_bool_val("FLAG_UNSET", default=True) is True

    def test_list_syntax(self, env, helper_config):
        env.setenv("PREFIXES", "[https://a/, https://b/ ,]")
        env.setenv("NUMBERS", "[1,2,3]")
        env.setenv("BARE_LIST", "a,b")

        assert helper_config.get_list_val("PREFIXES") == ["https://a/", "https://b/"]
        assert helper_config.get_list_val("NUMBERS", element_type=int) == [1, 2, 3]
        with pytest.raises(ValueError, match="format"):
            helper_config.get_list_val("BARE_LIST")

    def test_relative_path_resolves_against_root_dir(self, env, helper_config, tmp_path):
        env.setenv("SOME_DB", "data/contexts.db")

        assert helper_config.get_path_val("SOME_DB") == os.path.join(str(tmp_path), "data/contexts.db")
        assert helper_config.get_path_val("OTHER_DB", default="/var/lib/contexts.db") == "/var/lib/contexts.db"
