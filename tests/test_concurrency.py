"""Row locks only serialise receipts on a database with SELECT ... FOR UPDATE."""

import threading
from decimal import Decimal

import pytest
from django.db import connection, connections

from core.exceptions import OverReceiptError
from documents.models import PurchaseOrderLine
from documents.services import receptions
from inventory.models import StockLedgerEntry

pytestmark = [
    pytest.mark.django_db(transaction=True),
    pytest.mark.skipif(connection.vendor != "postgresql", reason="needs row-level locking"),
]


def test_parallel_receipts_never_exceed_ordered(entity, supplier, warehouse, user, order, order_line, receipt):
    barrier = threading.Barrier(2)
    outcomes = []

    def receive():
        try:
            barrier.wait()
            receptions.create_reception(entity, {
                "supplier_id": supplier.pk,
                "warehouse_id": warehouse.pk,
                "purchase_order_id": order.pk,
                "lines": [receipt(order_line, "6")],
            }, by=user)
            outcomes.append("ok")
        except OverReceiptError:
            outcomes.append("over")
        finally:
            connections.close_all()

    threads = [threading.Thread(target=receive) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["ok", "over"]
    assert PurchaseOrderLine.objects.get(pk=order_line.pk).received_quantity == Decimal("6")
    assert StockLedgerEntry.objects.filter(product_id=order_line.product_id).count() == 1
