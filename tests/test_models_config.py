"""Tests for configuration models."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hybridqa.models.config import (
    ConcurrencyConfig,
    ExecutionConfig,
    OrchestratorConfig,
    RetryConfig,
    ViewportConfig,
)


class TestExecutionConfig:
    """Tests for ExecutionConfig model."""

    def test_default_values(self):
        config = ExecutionConfig()
        assert config.timeouts.visual == 30000
        assert config.timeouts.automation == 60000
        assert config.timeouts.total == 300000
        assert config.retries.count == 3
        assert config.retries.backoff == "exponential"

    def test_unknown_backoff_rejected(self):
        with pytest.raises(ValidationError):
            RetryConfig(backoff="fibonacci")

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            ConcurrencyConfig(max_parallel=0)


class TestOrchestratorConfig:
    """Tests for OrchestratorConfig model."""

    @patch.dict(os.environ, {}, clear=True)
    def test_default_values(self):
        config = OrchestratorConfig()
        assert config.state_file == "test-state.json"
        assert config.screenshot_dir == "./screenshots"
        assert config.browser == "chromium"
        assert config.headless is True
        assert isinstance(config.viewport, ViewportConfig)
        assert config.host == "127.0.0.1"
        assert config.port == 3001
        assert config.navigation_attempts == 3
        assert config.retention_seconds == 24 * 3600

    @patch.dict(os.environ, {"PORT": "8080"})
    def test_port_env_override(self):
        assert OrchestratorConfig(port=9000).port == 8080

    @patch.dict(os.environ, {"QA_PORT": "4000"}, clear=True)
    def test_env_reference_port(self):
        assert OrchestratorConfig(port="env:QA_PORT").port == 4000

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_env_reference_rejected(self):
        with pytest.raises(ValidationError):
            OrchestratorConfig(port="env:QA_PORT")

    def test_unknown_browser_rejected(self):
        with pytest.raises(ValidationError):
            OrchestratorConfig(browser="opera")

    @patch.dict(os.environ, {}, clear=True)
    def test_save_and_load(self, tmp_path: Path):
        path = tmp_path / "nested" / "hybridqa-config.json"
        config = OrchestratorConfig(
            state_file="state.json",
            headless=False,
            execution=ExecutionConfig(retries=RetryConfig(count=1, backoff="linear")),
        )
        config.save(path)

        with open(path) as f:
            assert json.load(f)["headless"] is False

        loaded = OrchestratorConfig.load(path)
        assert loaded.model_dump() == config.model_dump()
        assert loaded.execution.retries.backoff == "linear"

    def test_load_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            OrchestratorConfig.load(tmp_path / "missing.json")
