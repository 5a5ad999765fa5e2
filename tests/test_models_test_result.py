"""Tests for result models."""

import pytest
from pydantic import ValidationError

from hybridqa.models.test_result import (
    PerformanceMetrics,
    StepResult,
    TestResult as ResultModel,
    VisualIssue,
    VisualScores,
)


class TestStepResult:
    """Tests for StepResult model."""

    def test_error_omitted_on_wire_when_absent(self):
        step = StepResult(status="pass", action="click", duration=12)
        assert step.to_wire() == {"status": "pass", "action": "click", "duration": 12}

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            StepResult(status="skipped", action="click")


class TestPerformanceMetrics:
    """Tests for PerformanceMetrics model."""

    def test_collection_failed_bundle(self):
        metrics = PerformanceMetrics.collection_failed("Metrics collection timeout")
        assert metrics.performance.fcp == 0
        assert metrics.performance.lcp == 0
        assert metrics.performance.cls == 0
        assert metrics.network.requests == 0
        assert metrics.network.failures == 1
        assert metrics.console.errors == [
            "Metrics collection failed: Metrics collection timeout"
        ]

    def test_negative_timing_rejected(self):
        with pytest.raises(ValidationError):
            PerformanceMetrics.model_validate({"performance": {"fcp": -1, "lcp": 0, "cls": 0}})


class TestVisualModels:
    """Tests for visual analysis models."""

    @pytest.mark.parametrize("score", [-1, 100.5])
    def test_scores_bounded(self, score):
        with pytest.raises(ValidationError):
            VisualScores(accessibility=score)

    def test_scores_use_camel_case(self):
        data = VisualScores(accessibility=1, design_consistency=2, layout_accuracy=3).to_wire()
        assert data == {"accessibility": 1, "designConsistency": 2, "layoutAccuracy": 3}

    def test_unknown_severity_rejected(self):
        with pytest.raises(ValidationError):
            VisualIssue(severity="blocker", description="Broken")


class TestTestResult:
    """Tests for TestResult model."""

    def test_defaults(self):
        result = ResultModel(test_id="t-1")
        assert result.status == "error"
        assert result.id
        assert result.timestamp > 0
        assert result.automation_results.steps == []

    def test_wire_keys(self):
        data = ResultModel(test_id="t-1", status="pass").to_wire()
        assert data["testId"] == "t-1"
        assert set(data) == {
            "id", "testId", "timestamp", "duration", "status",
            "visualAnalysis", "automationResults",
        }
        assert set(data["automationResults"]) == {"steps", "metrics"}
