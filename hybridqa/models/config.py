"""Configuration models for the hybrid UI test orchestrator."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from hybridqa.models.base import WireModel

BrowserEngine = Literal["chromium", "firefox", "webkit"]


class ViewportConfig(BaseModel):
    width: int = 1280
    height: int = 720


class ConcurrencyConfig(WireModel):
    # Reserved for a multi-worker scheduler; the queue is drained one test at a time.
    max_parallel: int = Field(default=1, ge=1)
    per_browser: int = Field(default=1, ge=1)


class TimeoutConfig(WireModel):
    visual: int = 30000  # ms
    automation: int = 60000
    total: int = 300000


class RetryConfig(WireModel):
    count: int = Field(default=3, ge=0)
    backoff: Literal["linear", "exponential"] = "exponential"
    base_delay_ms: int = Field(default=500, ge=0)


class ExecutionConfig(WireModel):
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retries: RetryConfig = Field(default_factory=RetryConfig)


class OrchestratorConfig(BaseModel):
    # Persistence
    state_file: str = "test-state.json"
    screenshot_dir: str = "./screenshots"

    # Browser
    browser: BrowserEngine = "chromium"
    headless: bool = True
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agent: str | None = None

    # Navigation behaviour of the automation backend
    navigation_attempts: int = Field(default=3, ge=1)
    navigation_timeout_ms: int = 15000
    settle_ms: int = 3000  # wait for dynamic content after navigation
    selector_timeout_ms: int = 10000
    metrics_timeout_ms: int = 10000

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 3001

    # AI settings
    ai_model: str = "claude-opus-4-6"
    ai_max_tokens: int = 4096

    # Screenshot housekeeping
    screenshot_retention_hours: float = 24
    housekeeping_interval_seconds: int = 3600

    # Seeds for the persisted snapshot
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    @field_validator("port", mode="before")
    @classmethod
    def resolve_env_port(cls, v):
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return int(resolved)
        return v

    def model_post_init(self, __context) -> None:
        port = os.environ.get("PORT")
        if port:
            self.port = int(port)

    @property
    def retention_seconds(self) -> float:
        return self.screenshot_retention_hours * 3600

    @classmethod
    def load(cls, path: str | Path) -> "OrchestratorConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
