"""Post-commit document notifications.

Audit and notification collaborators subscribe to `document_changed`. It is
only sent once the surrounding transaction has committed, so a rolled-back
operation never produces a notification.
"""

import logging

from django.db import transaction
from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# kwargs: document, action, by
document_changed = Signal()


def notify_document_changed(document, action: str, by=None):
    """Schedule a document_changed signal for after the current commit."""
    sender = type(document)

    def _send():
        document_changed.send(sender=sender, document=document, action=action, by=by)

    transaction.on_commit(_send)


@receiver(document_changed)
def log_document_change(sender, document, action, by=None, **kwargs):
    logger.info(
        "%s %s: %s (by %s)",
        sender.__name__, document.pk, action, getattr(by, "pk", None),
    )
