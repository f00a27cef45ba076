"""Record of non-fatal failures absorbed by best-effort operations."""
import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class SyncIssue:
    """A failure that was absorbed instead of being raised."""
    operation: str
    store: str
    error_type: str
    message: str


@dataclass
class IssueSink:
    """
    Collects absorbed failures so callers can tell a fallback happened.

    Every recorded issue is also logged as a warning.
    """
    issues: List[SyncIssue] = field(default_factory=list)

    def record(self, operation: str, store: str, error: Exception) -> SyncIssue:
        issue = SyncIssue(
            operation=operation,
            store=store,
            error_type=type(error).__name__,
            message=str(error)
        )
        self.issues.append(issue)
        logger.warning(
            f"{operation} absorbed {issue.error_type} from {store} store: {issue.message}"
        )
        return issue

    def for_operation(self, operation: str) -> List[SyncIssue]:
        return [issue for issue in self.issues if issue.operation == operation]

    def clear(self) -> None:
        self.issues.clear()
