"""Side-Effect Adapters.

Implementations of the survey, notification and approval-authority ports.
The survey and notification adapters hand messages to the application log;
deployments that talk to a mail or survey service plug in their own port
implementations.
"""

import logging
import uuid
from collections import deque
from typing import Iterable, Optional

from src.domain.health_check_result import HealthCheckResult
from src.domain.ports import (
    ApprovalAuthorityPort,
    ExternalSideEffectFailure,
    NotificationPort,
    Result,
    SurveyPort,
)

logger = logging.getLogger(__name__)


class LoggingSurveyAdapter(SurveyPort):
    """Issues a survey id and logs the request for the record's subject."""

    def create_survey(self, record: HealthCheckResult) -> Result[str]:
        try:
            survey_id = str(uuid.uuid4())
            logger.info(
                f"Survey {survey_id} requested for {record.subject.id} after {record.code}",
                extra={"record_id": record.id},
            )
            return Result.success_result(survey_id)
        except Exception as e:
            logger.error(f"Failed to request survey for {record.code}: {e}", exc_info=True)
            return Result.failure_result(
                ExternalSideEffectFailure(str(e), capability="survey"),
                error_type="ExternalSideEffectFailure"
            )


class LoggingNotificationAdapter(NotificationPort):
    """Writes each notification to the log instead of sending it.

    The most recent ``history_size`` notifications are kept in ``sent`` so
    operators and tests can see what would have gone out.
    """

    def __init__(self, history_size: int = 100):
        self.sent: deque[dict] = deque(maxlen=history_size)

    def notify(self, recipient_id: str, subject: str, message: str, record_id: Optional[str] = None) -> Result[None]:
        if not recipient_id:
            return Result.failure_result(
                ExternalSideEffectFailure("Notification has no recipient", capability="notification"),
                error_type="ExternalSideEffectFailure"
            )
        self.sent.append({"recipient_id": recipient_id, "subject": subject, "message": message, "record_id": record_id})
        logger.info(f"Notification to {recipient_id}: {subject}", extra={"record_id": record_id})
        return Result.success_result(None)


class StaticApprovalAuthority(ApprovalAuthorityPort):
    """Approval authority from a fixed set of staff ids.

    An empty set grants authority to every actor.
    """

    def __init__(self, approver_ids: Optional[Iterable[str]] = None):
        self.approver_ids = frozenset(approver_ids or ())

    def has_approval_authority(self, actor_id: str) -> bool:
        if not self.approver_ids:
            return True
        return actor_id in self.approver_ids
