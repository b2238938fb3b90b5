"""Turn outcome evaluation."""

from core.state import ApplicationResult


def turn_outcome(result: ApplicationResult) -> str:
    """success: no errors. partial: errors but something landed. failed: nothing landed."""
    if not result.errors:
        return "success"
    landed = result.files_created or result.files_updated or result.packages_installed
    return "partial" if landed else "failed"
