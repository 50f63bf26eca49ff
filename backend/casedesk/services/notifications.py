"""Fire-and-forget notification hook invoked after lifecycle transitions commit.

Delivery channels (email, SMS, desktop push) live outside this service; the
default notifier only records the event in the log. Whatever notifier is
plugged in, ``dispatch`` isolates its failures from the caller.
"""
from __future__ import annotations
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

EVENT_ASSIGNED = 'request.assigned'
EVENT_COMPLETED = 'request.completed'
EVENT_SENT_BACK = 'request.sent_back'
EVENT_INVESTIGATING = 'request.investigating'
EVENT_UNABLE_TO_HANDLE = 'request.unable_to_handle'
EVENT_AUTO_RETURNED = 'request.auto_returned'


class Notifier(Protocol):
    def notify(self, event: str, request, actor_id: Optional[int] = None) -> None: ...


class LoggingNotifier:
    def notify(self, event: str, request, actor_id: Optional[int] = None) -> None:
        logger.info('notification %s for %s', event, request.reference_number,
                    extra={'event': event, 'request_id': request.id, 'actor_id': actor_id,
                           'recipient_id': _recipient(event, request)})


def _recipient(event: str, request) -> Optional[int]:
    # submitter hears about outcomes; handler hears about new work
    if event == EVENT_ASSIGNED:
        return request.assigned_to
    return request.created_by


def dispatch(notifier: Optional[Notifier], event: str, request, actor_id: Optional[int] = None) -> bool:
    """Invoke the notifier; never raises. Returns False when delivery failed."""
    if notifier is None:
        return True
    try:
        notifier.notify(event, request, actor_id)
        return True
    except Exception:
        logger.exception('notification %s failed for request %s', event, getattr(request, 'id', None))
        return False

__all__ = [
    'Notifier', 'LoggingNotifier', 'dispatch',
    'EVENT_ASSIGNED', 'EVENT_COMPLETED', 'EVENT_SENT_BACK', 'EVENT_INVESTIGATING',
    'EVENT_UNABLE_TO_HANDLE', 'EVENT_AUTO_RETURNED',
]
