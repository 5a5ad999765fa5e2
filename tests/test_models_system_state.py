"""Tests for the persisted orchestrator snapshot."""

from hybridqa.models.config import ConcurrencyConfig, ExecutionConfig, TimeoutConfig
from hybridqa.models.system_state import TestingSystem as Snapshot
from hybridqa.models.test_result import TestResult as ResultModel


class TestSnapshotShape:
    """The snapshot serializes to the nested camelCase document."""

    def test_fresh_snapshot_wire_form(self):
        data = Snapshot.fresh().to_wire()
        runner = data["orchestrator"]["testRunner"]
        state = data["orchestrator"]["state"]

        assert runner["queue"] == {"pending": [], "running": [], "completed": [], "failed": []}
        assert runner["concurrency"] == {"maxParallel": 1, "perBrowser": 1}
        assert runner["execution"] == {
            "timeouts": {"visual": 30000, "automation": 60000, "total": 300000},
            "retries": {"count": 3, "backoff": "exponential", "baseDelayMs": 500},
        }
        assert state["current"] == {
            "phase": "setup", "test": None, "screenshots": [], "results": [],
        }
        assert state["history"] == {
            "tests": [],
            "analytics": {
                "totalRuns": 0, "passRate": 0, "averageDuration": 0, "commonIssues": [],
            },
        }

    def test_current_test_serialized_when_set(self, make_test):
        snapshot = Snapshot.fresh()
        test = make_test("t-1")
        snapshot.current.test = test
        assert snapshot.to_wire()["orchestrator"]["state"]["current"]["test"]["id"] == "t-1"

    def test_fresh_copies_seed_config(self):
        execution = ExecutionConfig(timeouts=TimeoutConfig(visual=10))
        concurrency = ConcurrencyConfig(max_parallel=4)
        snapshot = Snapshot.fresh(concurrency, execution)

        runner = snapshot.orchestrator.test_runner
        assert runner.execution.timeouts.visual == 10
        assert runner.concurrency.max_parallel == 4
        runner.execution.timeouts.visual = 99
        assert execution.timeouts.visual == 10

    def test_round_trip(self, make_test):
        snapshot = Snapshot.fresh()
        snapshot.queue.pending.append(make_test("t-1"))
        snapshot.queue.completed.append(make_test("t-2"))
        snapshot.current.results.append(ResultModel(test_id="t-2", status="pass", duration=50))

        restored = Snapshot.model_validate(snapshot.to_wire())
        assert restored.to_wire() == snapshot.to_wire()
        assert restored.queue.pending[0].id == "t-1"


class TestQueueLocate:
    """Tests for TestQueue.locate."""

    def test_reports_holding_lists(self, make_test):
        snapshot = Snapshot.fresh()
        snapshot.queue.pending.append(make_test("a"))
        snapshot.queue.failed.append(make_test("b"))

        assert snapshot.queue.locate("a") == ["pending"]
        assert snapshot.queue.locate("b") == ["failed"]
        assert snapshot.queue.locate("missing") == []
