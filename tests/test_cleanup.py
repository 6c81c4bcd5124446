"""Tests for the cleanup registry."""

from src.core.cleanup import CleanupRegistry
from src.core.models import (
    PRIORITY_CACHES_LOGS,
    PRIORITY_DRIVE_MAPPING,
    PRIORITY_MOUNTED_HIVE,
    PRIORITY_SCRATCH_FILES,
)


class TestCleanupRegistry:
    """Tests for CleanupRegistry."""

    def test_runs_highest_priority_first(self):
        """Test that entries run in descending priority order."""
        order: list[str] = []
        registry = CleanupRegistry()
        registry.register_callback("logs", PRIORITY_CACHES_LOGS, lambda: order.append("logs"))
        registry.register_callback("scratch", PRIORITY_SCRATCH_FILES, lambda: order.append("scratch"))
        registry.register_callback("drive", PRIORITY_DRIVE_MAPPING, lambda: order.append("drive"))
        registry.register_callback("hive", PRIORITY_MOUNTED_HIVE, lambda: order.append("hive"))

        report = registry.run_all()

        assert order == ["drive", "hive", "scratch", "logs"]
        assert report.executed == order
        assert report.success is True

    def test_equal_priorities_keep_registration_order(self):
        """Test that equal priorities run in registration order."""
        order: list[str] = []
        registry = CleanupRegistry()
        for name in ("alice", "bob", "default"):
            registry.register_callback(name, PRIORITY_MOUNTED_HIVE, lambda n=name: order.append(n))

        registry.run_all()

        assert order == ["alice", "bob", "default"]

    def test_failures_are_recorded_not_raised(self):
        """Test that a failing entry does not stop later entries."""
        order: list[str] = []

        def boom():
            raise OSError("file in use")

        registry = CleanupRegistry()
        registry.register_callback("first", 100, boom)
        registry.register_callback("second", 50, lambda: order.append("second"))

        report = registry.run_all()

        assert order == ["second"]
        assert report.failed == ["first"]
        assert "file in use" in report.errors[0]
        assert report.success is False

    def test_entries_run_once(self):
        """Test that run_all never runs an entry twice."""
        calls: list[int] = []
        registry = CleanupRegistry()
        registry.register_callback("once", 50, lambda: calls.append(1))

        registry.run_all()
        report = registry.run_all()

        assert calls == [1]
        assert report.executed == []
        assert registry.has_run is True

    def test_pending_order(self):
        """Test that pending() previews execution order."""
        registry = CleanupRegistry()
        registry.register_callback("low", 25, lambda: None)
        registry.register_callback("high", 100, lambda: None)

        assert [e.name for e in registry.pending()] == ["high", "low"]
        assert len(registry) == 2
