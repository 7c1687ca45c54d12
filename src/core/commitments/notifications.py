import logging
from dataclasses import dataclass
from typing import Literal, Optional, Protocol

logger = logging.getLogger(__name__)

NotificationKind = Literal[
    "APPROVAL_REQUESTED",
    "APPROVAL_REMINDER",
    "ACCEPTANCE_REQUESTED",
    "ACCEPTANCE_REMINDER",
]


@dataclass(frozen=True)
class CommitmentNotification:
    kind: NotificationKind
    commitment_id: str
    commitment_version: int
    title: str
    url: str
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None


class CommitmentNotifier(Protocol):
    def notify(self, notification: CommitmentNotification) -> None: ...


class LoggingCommitmentNotifier:
    """Default notifier: records the outbound message in the service log."""

    def notify(self, notification: CommitmentNotification) -> None:
        logger.info(
            "commitment.notification.sent",
            extra={
                "extra_fields": {
                    "notification_kind": notification.kind,
                    "commitment_id": notification.commitment_id,
                    "commitment_version": notification.commitment_version,
                    "recipient_email": notification.recipient_email,
                }
            },
        )


def dispatch_notification(
    notifier: CommitmentNotifier, notification: CommitmentNotification
) -> bool:
    """Deliver after commit. A failed delivery is logged and never undoes the transition."""
    try:
        notifier.notify(notification)
    except Exception:
        logger.exception(
            "commitment.notification.failed",
            extra={
                "extra_fields": {
                    "notification_kind": notification.kind,
                    "commitment_id": notification.commitment_id,
                    "commitment_version": notification.commitment_version,
                }
            },
        )
        return False
    return True
