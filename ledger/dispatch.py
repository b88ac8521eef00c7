import logging
from typing import Optional
from uuid import UUID

from notifications import NotificationEvent, Notifier


logger = logging.getLogger(__name__)


# Called only after the triggering change has committed. A failing notifier is
# logged and never surfaces to the caller of the ledger operation.


def send_to_user(notifier: Optional[Notifier], user_id: UUID, event: NotificationEvent) -> None:
    if notifier is None:
        return
    try:
        notifier.notify_user(user_id, event)
    except Exception:
        logger.exception("Failed to notify user %s of %s", user_id, event.type)


def send_to_all(notifier: Optional[Notifier], event: NotificationEvent) -> None:
    if notifier is None:
        return
    try:
        notifier.broadcast(event)
    except Exception:
        logger.exception("Failed to broadcast %s", event.type)
