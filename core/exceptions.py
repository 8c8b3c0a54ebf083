"""Typed failures raised by the procurement core.

Every error here is a caller/business error: it is raised before any side
effect, or inside a transaction.atomic block that rolls back. None of them is
retried automatically. ServiceUnavailableError is the only one that wraps an
infrastructure fault, and the whole operation is safe to retry after it.
"""

from django_fsm import TransitionNotAllowed


class ProcurementError(Exception):
    """Base class for all procurement errors."""

    code = "procurement_error"


class ValidationError(ProcurementError, ValueError):
    """Malformed input, e.g. a non-positive quantity."""

    code = "validation_error"


class NotFoundError(ProcurementError, LookupError):
    """A referenced product/variant/order line/document does not exist (or is not usable)."""

    code = "not_found"


class OverReceiptError(ProcurementError):
    """Received quantity would exceed the ordered quantity."""

    code = "over_receipt"


class QuantityDriftError(OverReceiptError):
    """Stored received quantity disagrees with the sum of active reception lines."""

    code = "quantity_drift"


class InvalidStateTransitionError(ProcurementError):
    """A status guard was violated (e.g. editing a COMPLETE reception)."""

    code = "invalid_state"


class InvalidLocationError(ProcurementError):
    """Stock location is ambiguous (warehouse and shop) or missing."""

    code = "invalid_location"


class ServiceUnavailableError(ProcurementError):
    """Infrastructure failure; the transaction was rolled back."""

    code = "unavailable"


def run_transition(obj, name: str, **kwargs):
    """Call an FSM transition method and translate django-fsm's refusal.

    Example:
        run_transition(order, "approve", by=user)
    """
    method = getattr(obj, name)
    try:
        return method(**kwargs)
    except TransitionNotAllowed as exc:
        current = getattr(obj, "status", None)
        raise InvalidStateTransitionError(
            f"{type(obj).__name__} {obj.pk}: transition '{name}' not allowed from status '{current}'."
        ) from exc
