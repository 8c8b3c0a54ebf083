from .purchase import PurchaseOrder, PurchaseOrderLine
from .reception import Reception, ReceptionLine
from .supplier_invoice import (
    SupplierInvoice,
    SupplierInvoiceLine,
    SupplierInvoicePurchaseOrder,
    SupplierPayment,
)

__all__ = [
    "PurchaseOrder",
    "PurchaseOrderLine",
    "Reception",
    "ReceptionLine",
    "SupplierInvoice",
    "SupplierInvoiceLine",
    "SupplierInvoicePurchaseOrder",
    "SupplierPayment",
]
