"""Tests for the rollback stack."""

from src.core.models import ExecutionSummary, RollbackEntry
from src.core.rollback import RollbackStack, create_rollback_stack


def _entry(journal: list[str], name: str, error: Exception | None = None) -> RollbackEntry:
    def compensate():
        journal.append(name)
        if error is not None:
            raise error

    return RollbackEntry(description=name, compensating_action=compensate, scope_key="Machine")


class TestRollbackStack:
    """Tests for RollbackStack."""

    def test_invokes_in_reverse_order(self):
        """Test that compensations run most recent first."""
        journal: list[str] = []
        stack = RollbackStack()
        for name in ("first", "second", "third"):
            stack.push(_entry(journal, name))

        report = stack.invoke_all("mandatory action failed")

        assert journal == ["third", "second", "first"]
        assert report.attempted == 3
        assert report.succeeded == 3
        assert report.success is True

    def test_continues_after_failure(self):
        """Test that a failing compensation does not stop the unwind."""
        journal: list[str] = []
        summary = ExecutionSummary()
        stack = RollbackStack(summary=summary)
        stack.push(_entry(journal, "first"))
        stack.push(_entry(journal, "second", RuntimeError("access denied")))
        stack.push(_entry(journal, "third"))

        report = stack.invoke_all("test")

        assert journal == ["third", "second", "first"]
        assert report.failed == 1
        assert report.succeeded == 2
        assert report.success is False
        assert "access denied" in report.errors[0]
        assert summary.rollback_failures == 1
        assert summary.rollbacks_performed == 2
        assert "ROLLBACK_COMPENSATION_FAILURE" in summary.error_messages[0]

    def test_drains_stack(self):
        """Test that invoking the stack empties it."""
        journal: list[str] = []
        stack = RollbackStack()
        stack.push(_entry(journal, "only"))

        stack.invoke_all("test")
        second = stack.invoke_all("again")

        assert len(stack) == 0
        assert second.attempted == 0
        assert journal == ["only"]

    def test_dry_run_does_not_execute(self):
        """Test that a dry-run unwind only logs."""
        journal: list[str] = []
        stack = RollbackStack(dry_run=True)
        stack.push(_entry(journal, "first"))

        report = stack.invoke_all("test")

        assert journal == []
        assert report.simulated is True
        assert report.attempted == 1

    def test_entries_snapshot(self):
        """Test that entries are listed oldest first."""
        stack = create_rollback_stack()
        stack.push(_entry([], "a"))
        stack.push(_entry([], "b"))

        assert [e.description for e in stack.entries] == ["a", "b"]
