"""Deal question orchestration.

- classifier: which activity kinds a question needs
- notifier: soft-deadline progress notice
- pipeline: the four-phase fan-out with a single error boundary
"""

from src.deal_context.orchestrator.classifier import determine_required_data
from src.deal_context.orchestrator.notifier import race_with_notice
from src.deal_context.orchestrator.schemas import (
    DealBundle,
    MentionEvent,
    RequiredData,
    RunOutcome,
)

__all__ = [
    "DealBundle",
    "MentionEvent",
    "RequiredData",
    "RunOutcome",
    "determine_required_data",
    "race_with_notice",
]
