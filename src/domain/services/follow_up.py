"""Follow-up urgency classification.

Urgency is derived at read time from the follow-up date and the caller's
current date. It is never stored, so it cannot go stale.
"""

from datetime import date
from typing import Any, Callable, Optional

from src.domain.enums import FollowUpUrgency
from src.domain.services.filter_engine import coerce_date


def classify_follow_up(follow_up_date: Any, today: date) -> Optional[FollowUpUrgency]:
    """Classify a follow-up date relative to ``today``.

    Parameters:
        follow_up_date: date, datetime or ISO string (None when no follow-up)
        today: The caller's current date

    Returns:
        OVERDUE if strictly before today, TODAY if equal, UPCOMING otherwise;
        None when there is no follow-up date
    """
    value = coerce_date(follow_up_date)
    if value is None:
        return None
    if value < today:
        return FollowUpUrgency.OVERDUE
    if value == today:
        return FollowUpUrgency.TODAY
    return FollowUpUrgency.UPCOMING


def follow_up_urgency_field(today: date) -> Callable[[Any], Optional[FollowUpUrgency]]:
    """Build a FilterEngine derived-field accessor bound to ``today``."""

    def accessor(record: Any) -> Optional[FollowUpUrgency]:
        if isinstance(record, dict):
            return classify_follow_up(record.get("follow_up_date"), today)
        return classify_follow_up(getattr(record, "follow_up_date", None), today)

    return accessor
