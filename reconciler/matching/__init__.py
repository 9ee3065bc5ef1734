"""Auto-matching of transactions to events and categories."""

from reconciler.matching.engine import (
    AutoMatchEngine,
    ClaimTracker,
    in_event_month,
    month_window,
)
from reconciler.matching.keywords import (
    STOP_WORDS,
    extract_keywords,
    has_significant_keyword_match,
    titles_match,
)
from reconciler.matching.linking import LinkService
from reconciler.matching.rules import RuleManager, RuleValidationError

__all__ = [
    "AutoMatchEngine",
    "ClaimTracker",
    "LinkService",
    "RuleManager",
    "RuleValidationError",
    "STOP_WORDS",
    "extract_keywords",
    "has_significant_keyword_match",
    "in_event_month",
    "month_window",
    "titles_match",
]
