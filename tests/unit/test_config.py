"""Unit tests for environment configuration."""

from pathlib import Path

import pytest

from plantrack.config import DEFAULT_MAX_CHAIN_DEPTH, PlanTrackConfig
from plantrack.errors import ValidationError


class TestPlanTrackConfig:
    """Test cases for PlanTrackConfig.from_env."""

    def test_defaults_under_project_root(self, tmp_path):
        """Test the defaults derived from the project root."""
        config = PlanTrackConfig.from_env({"PLANTRACK_PROJECT_ROOT": str(tmp_path)})

        assert config.project_root == tmp_path.resolve()
        assert config.db_path == tmp_path.resolve() / ".plantrack" / "plantrack.db"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.max_chain_depth == DEFAULT_MAX_CHAIN_DEPTH

    def test_defaults_to_cwd(self, tmp_path, monkeypatch):
        """Test that the project root defaults to the working directory."""
        monkeypatch.chdir(tmp_path)

        config = PlanTrackConfig.from_env({})

        assert config.project_root == Path.cwd().resolve()

    def test_explicit_values(self, tmp_path):
        """Test reading every setting from the environment."""
        config = PlanTrackConfig.from_env({
            "PLANTRACK_PROJECT_ROOT": str(tmp_path),
            "PLANTRACK_DB_PATH": str(tmp_path / "custom.db"),
            "PLANTRACK_LOG_LEVEL": "debug",
            "PLANTRACK_LOG_FILE": str(tmp_path / "logs" / "plantrack.log"),
            "PLANTRACK_MAX_CHAIN_DEPTH": "4",
        })

        assert config.db_path == tmp_path / "custom.db"
        assert config.log_level == "DEBUG"
        assert config.log_file == tmp_path / "logs" / "plantrack.log"
        assert config.max_chain_depth == 4

    def test_missing_project_root(self, tmp_path):
        """Test that a missing project root is rejected."""
        with pytest.raises(ValidationError, match="does not exist"):
            PlanTrackConfig.from_env({"PLANTRACK_PROJECT_ROOT": str(tmp_path / "nope")})

    def test_invalid_log_level(self, tmp_path):
        """Test that an unknown log level is rejected."""
        with pytest.raises(ValidationError, match="PLANTRACK_LOG_LEVEL"):
            PlanTrackConfig.from_env({"PLANTRACK_PROJECT_ROOT": str(tmp_path), "PLANTRACK_LOG_LEVEL": "chatty"})

    @pytest.mark.parametrize("value", ["ten", "0", "-3"])
    def test_invalid_max_chain_depth(self, tmp_path, value):
        """Test that a non-positive or non-numeric chain depth is rejected."""
        with pytest.raises(ValidationError, match="PLANTRACK_MAX_CHAIN_DEPTH"):
            PlanTrackConfig.from_env({"PLANTRACK_PROJECT_ROOT": str(tmp_path), "PLANTRACK_MAX_CHAIN_DEPTH": value})
