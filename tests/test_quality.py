"""Tests for core.quality."""

from core.quality import turn_outcome
from core.state import ApplicationResult


def test_success_when_no_errors():
    assert turn_outcome(ApplicationResult(files_created=["src/App.jsx"])) == "success"
    assert turn_outcome(ApplicationResult()) == "success"


def test_partial_when_something_landed():
    result = ApplicationResult(files_updated=["src/App.jsx"], errors=["Command 'npm test' failed"])
    assert turn_outcome(result) == "partial"
    result = ApplicationResult(packages_installed=["axios"], errors=["Failed to create src/A.jsx"])
    assert turn_outcome(result) == "partial"


def test_failed_when_nothing_landed():
    result = ApplicationResult(packages_failed=["axios"], errors=["Failed to install packages: axios"])
    assert turn_outcome(result) == "failed"
