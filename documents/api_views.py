"""JSON endpoints for the procurement core.

Thin wrappers: resolve the caller's entity, parse the JSON body, call the
service, serialise the result. Failures are mapped to HTTP status codes by
`api_endpoint`:

    ValidationError               -> 400
    NotFoundError                 -> 404
    OverReceiptError              -> 409
    InvalidStateTransitionError   -> 409
    InvalidLocationError          -> 422
    DatabaseError                 -> 503 (rolled back, safe to retry)
"""

import functools
import json
import logging

from django.contrib.auth.decorators import login_required
from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core.exceptions import (
    InvalidLocationError,
    InvalidStateTransitionError,
    NotFoundError,
    OverReceiptError,
    ProcurementError,
    ServiceUnavailableError,
    ValidationError,
)
from documents.models import PurchaseOrder, PurchaseOrderLine, Reception, SupplierInvoice
from documents.services import invoice_links, order_lines, purchase_orders, receptions
from documents.services.common import fetch
from inventory.services import ledger
from masterdata.models import Product, ProductVariant, Shop, Warehouse

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (InvalidLocationError, 422),
    (ValidationError, 400),
    (NotFoundError, 404),
    (OverReceiptError, 409),
    (InvalidStateTransitionError, 409),
    (ServiceUnavailableError, 503),
)

ORDER_ACTIONS = {
    "submit": purchase_orders.submit_purchase_order,
    "approve": purchase_orders.approve_purchase_order,
    "send": purchase_orders.send_purchase_order,
    "cancel": purchase_orders.cancel_purchase_order,
}


def _error(exc: ProcurementError, status: int):
    return JsonResponse({"error": exc.code, "detail": str(exc)}, status=status)


def api_endpoint(view):
    """Translate procurement and database errors into JSON responses."""
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ProcurementError as exc:
            for error_class, status in ERROR_STATUS:
                if isinstance(exc, error_class):
                    return _error(exc, status)
            return _error(exc, 400)
        except DatabaseError:
            logger.exception("Database error in %s", view.__name__)
            return _error(ServiceUnavailableError("The database is unavailable; nothing was changed, retry later."), 503)
    return wrapper


def _get_entity(request):
    profile = getattr(request.user, "profile", None)
    if profile is None:
        raise NotFoundError("No entity is configured for this user.")
    return profile.entity


def _user(request):
    return request.user if request.user.is_authenticated else None


def _json_body(request) -> dict:
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _scoped_reception(request, pk) -> Reception:
    return fetch(Reception.objects.filter(entity=_get_entity(request)), pk, "Reception")


def _line_payload(line) -> dict:
    return {
        "id": line.pk,
        "reception_id": line.reception_id,
        "order_line_id": line.order_line_id,
        "product_id": line.product_id,
        "variant_id": line.variant_id,
        "quantity": line.quantity,
        "unit_cost": line.unit_cost,
        "lot_number": line.lot_number,
        "expiry_date": line.expiry_date,
        "notes": line.notes,
    }


def _parse_change(raw) -> object:
    if not isinstance(raw, dict):
        raise ValidationError("Each change must be an object.")
    op = raw.get("op")
    if op == "add":
        return receptions.AddLine(raw.get("data") or {})
    if op == "update":
        return receptions.UpdateLine(raw.get("line_id"), raw.get("data") or {})
    if op == "remove":
        return receptions.RemoveLine(raw.get("line_id"))
    raise ValidationError(f"Unknown change op {op!r}; expected add, update or remove.")


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_create_reception(request):
    reception = receptions.create_reception(_get_entity(request), _json_body(request), by=_user(request))
    return JsonResponse(receptions.reception_status(reception.pk), status=201)


@login_required
@require_http_methods(["GET"])
@api_endpoint
def api_reception_status(request, pk: int):
    reception = _scoped_reception(request, pk)
    return JsonResponse(receptions.reception_status(reception.pk))


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_add_reception_line(request, pk: int):
    reception = _scoped_reception(request, pk)
    line = receptions.add_line(reception.pk, _json_body(request), by=_user(request))
    return JsonResponse(_line_payload(line), status=201)


@login_required
@require_http_methods(["PATCH", "DELETE"])
@api_endpoint
def api_reception_line(request, pk: int, line_id: int):
    reception = _scoped_reception(request, pk)
    if request.method == "DELETE":
        receptions.remove_line(reception.pk, line_id, by=_user(request))
        return JsonResponse({"id": line_id, "removed": True})
    line = receptions.update_line(reception.pk, line_id, _json_body(request), by=_user(request))
    return JsonResponse(_line_payload(line))


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_apply_line_changes(request, pk: int):
    reception = _scoped_reception(request, pk)
    raw_changes = _json_body(request).get("changes")
    if not isinstance(raw_changes, list):
        raise ValidationError("'changes' must be a list.")
    changes = [_parse_change(raw) for raw in raw_changes]
    receptions.apply_line_changes(reception.pk, changes, by=_user(request))
    return JsonResponse(receptions.reception_status(reception.pk))


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_complete_reception(request, pk: int):
    reception = _scoped_reception(request, pk)
    receptions.complete_reception(reception.pk, by=_user(request))
    return JsonResponse(receptions.reception_status(reception.pk))


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_cancel_reception(request, pk: int):
    reception = _scoped_reception(request, pk)
    receptions.cancel_reception(reception.pk, by=_user(request))
    return JsonResponse(receptions.reception_status(reception.pk))


@login_required
@require_http_methods(["POST"])
@api_endpoint
def api_order_transition(request, pk: int, action: str):
    if action not in ORDER_ACTIONS:
        raise NotFoundError(f"Unknown purchase order action {action!r}.")
    order = fetch(PurchaseOrder.objects.filter(entity=_get_entity(request)), pk, "Purchase order")
    order = ORDER_ACTIONS[action](order.pk, by=_user(request))
    return JsonResponse({"id": order.pk, "order_no": order.order_no, "status": order.status})


@login_required
@require_http_methods(["GET"])
@api_endpoint
def api_order_line_remaining(request, pk: int):
    line = fetch(
        PurchaseOrderLine.objects.filter(order__entity=_get_entity(request)), pk, "Purchase order line",
    )
    return JsonResponse({
        "id": line.pk,
        "ordered": line.quantity,
        "received": order_lines.received_quantity(line.pk),
        "remaining": order_lines.remaining_quantity(line.pk),
    })


@login_required
@require_http_methods(["GET"])
@api_endpoint
def api_stock_level(request):
    entity = _get_entity(request)
    params = request.GET
    product = fetch(Product.objects.filter(entity=entity), params.get("product_id"), "Product")
    variant = None
    if params.get("variant_id"):
        variant = fetch(ProductVariant.objects.filter(product=product), params["variant_id"], "Product variant")

    ledger.check_location(params.get("warehouse_id") or None, params.get("shop_id") or None)
    warehouse = shop = None
    if params.get("warehouse_id"):
        warehouse = fetch(Warehouse.objects.filter(entity=entity), params["warehouse_id"], "Warehouse")
    else:
        shop = fetch(Shop.objects.filter(entity=entity), params["shop_id"], "Shop")

    level = ledger.current_level(product, variant, warehouse=warehouse, shop=shop)
    return JsonResponse({
        "product_id": product.pk,
        "variant_id": variant.pk if variant else None,
        "warehouse_id": warehouse.pk if warehouse else None,
        "shop_id": shop.pk if shop else None,
        "quantity": level,
    })


@login_required
@require_http_methods(["GET"])
@api_endpoint
def api_three_way_match(request, pk: int):
    invoice = fetch(SupplierInvoice.objects.filter(entity=_get_entity(request)), pk, "Supplier invoice")
    return JsonResponse(invoice_links.three_way_match(invoice.pk))
