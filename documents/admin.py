from django.contrib import admin, messages
from django_object_actions import DjangoObjectActions, action
from guardian.admin import GuardedModelAdmin
from simple_history.admin import SimpleHistoryAdmin

from core.admin_utils import EntityScopedAdminMixin
from core.exceptions import ProcurementError
from core.models import NumberSeries
from core.services.totals import apply_totals
from documents.models import (
    PurchaseOrder,
    PurchaseOrderLine,
    Reception,
    ReceptionLine,
    SupplierInvoice,
    SupplierInvoiceLine,
    SupplierInvoicePurchaseOrder,
    SupplierPayment,
)
from documents.services import purchase_orders, receptions, supplier_invoices


class ServiceActionMixin:
    """Run a document service from an admin button and report the outcome."""

    def run_service(self, request, func, obj, success: str):
        try:
            func(obj.pk, by=request.user)
        except ProcurementError as exc:
            self.message_user(request, f"{success} failed: {exc}", level=messages.ERROR)
        else:
            self.message_user(request, f"{success}: done.", level=messages.SUCCESS)


class PurchaseOrderLineInline(admin.TabularInline):
    model = PurchaseOrderLine
    extra = 0
    fields = ("line_no", "product", "variant", "description", "quantity", "unit_price", "vat_rate", "received_quantity")
    readonly_fields = ("line_no", "received_quantity")

    def has_change_permission(self, request, obj=None):
        return obj is None or obj.is_editable

    has_add_permission = has_change_permission
    has_delete_permission = has_change_permission


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(EntityScopedAdminMixin, DjangoObjectActions, ServiceActionMixin, GuardedModelAdmin, SimpleHistoryAdmin):
    inlines = [PurchaseOrderLineInline]
    list_display = ("order_no", "order_date", "supplier", "status", "total_ht", "total_ttc")
    list_filter = ("entity", "status")
    search_fields = ("order_no", "supplier__name")
    readonly_fields = ("order_no", "status", "total_ht", "total_vat", "total_ttc", "approved_by", "approved_at", "created_by")

    change_actions = ("submit_action", "approve_action", "send_action", "cancel_action")

    def get_change_actions(self, request, object_id, form_url):
        obj = self.get_object(request, object_id)
        if not obj:
            return ()
        Status = PurchaseOrder.Status
        if obj.status == Status.DRAFT:
            return ("submit_action", "cancel_action")
        if obj.status == Status.PENDING_APPROVAL:
            return ("approve_action", "cancel_action")
        if obj.status == Status.APPROVED:
            return ("send_action", "cancel_action")
        if obj.status in (Status.SENT_TO_SUPPLIER, Status.PARTIALLY_RECEIVED):
            return ("cancel_action",)
        return ()

    def save_model(self, request, obj, form, change):
        if not change:
            obj.created_by = request.user
            obj.order_no = NumberSeries.allocate_for(
                obj.entity, "series_purchase_order", code="PURCHASE_ORDER", prefix="PO-",
            )
        super().save_model(request, obj, form, change)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        apply_totals(form.instance)

    @action(label="Submit for approval")
    def submit_action(self, request, obj):
        self.run_service(request, purchase_orders.submit_purchase_order, obj, "Submit")

    @action(label="Approve")
    def approve_action(self, request, obj):
        self.run_service(request, purchase_orders.approve_purchase_order, obj, "Approval")

    @action(label="Send to supplier")
    def send_action(self, request, obj):
        self.run_service(request, purchase_orders.send_purchase_order, obj, "Send")

    @action(label="Cancel order")
    def cancel_action(self, request, obj):
        self.run_service(request, purchase_orders.cancel_purchase_order, obj, "Cancel")


class ReceptionLineInline(admin.TabularInline):
    """Lines are changed through the reception services (tracker + ledger), never here."""
    model = ReceptionLine
    extra = 0
    can_delete = False
    fields = ("product", "variant", "order_line", "quantity", "unit_cost", "lot_number", "expiry_date", "removed_at")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Reception)
class ReceptionAdmin(EntityScopedAdminMixin, DjangoObjectActions, ServiceActionMixin, GuardedModelAdmin, SimpleHistoryAdmin):
    inlines = [ReceptionLineInline]
    list_display = ("reception_no", "reception_date", "supplier", "purchase_order", "status")
    list_filter = ("entity", "status")
    search_fields = ("reception_no", "supplier__name", "purchase_order__order_no")
    readonly_fields = (
        "entity", "reception_no", "status", "supplier", "purchase_order", "warehouse", "shop",
        "received_by", "completed_at", "cancelled_at",
    )

    change_actions = ("complete_action", "cancel_action")

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def get_change_actions(self, request, object_id, form_url):
        obj = self.get_object(request, object_id)
        if not obj or not obj.is_mutable:
            return ()
        return ("complete_action", "cancel_action")

    @action(label="Complete reception")
    def complete_action(self, request, obj):
        self.run_service(request, receptions.complete_reception, obj, "Complete")

    @action(label="Cancel reception", description="Reverses every line and cancels the reception")
    def cancel_action(self, request, obj):
        self.run_service(request, receptions.cancel_reception, obj, "Cancel")


class SupplierInvoiceLineInline(admin.TabularInline):
    model = SupplierInvoiceLine
    extra = 0
    fields = ("line_no", "product", "variant", "description", "quantity", "unit_price", "vat_rate", "reception_line")
    readonly_fields = ("line_no", "reception_line")

    def has_change_permission(self, request, obj=None):
        return obj is None or obj.is_draft

    has_add_permission = has_change_permission
    has_delete_permission = has_change_permission


class SupplierInvoicePurchaseOrderInline(admin.TabularInline):
    model = SupplierInvoicePurchaseOrder
    extra = 0
    readonly_fields = ("purchase_order", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


class SupplierPaymentInline(admin.TabularInline):
    model = SupplierPayment
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "paid_on", "reference", "created_by", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SupplierInvoice)
class SupplierInvoiceAdmin(EntityScopedAdminMixin, DjangoObjectActions, ServiceActionMixin, GuardedModelAdmin, SimpleHistoryAdmin):
    inlines = [SupplierInvoiceLineInline, SupplierInvoicePurchaseOrderInline, SupplierPaymentInline]
    list_display = ("invoice_number", "invoice_date", "supplier", "status", "total_ttc")
    list_filter = ("entity", "status")
    search_fields = ("invoice_number", "supplier__name")
    readonly_fields = ("status", "total_ht", "total_vat", "total_ttc", "paid_at", "created_by")

    change_actions = ("submit_action", "mark_paid_action", "cancel_action", "void_action")

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        if obj is not None and obj.is_locked:
            editable = set(SupplierInvoice.LOCKED_EDITABLE_FIELDS)
            return tuple(fields) + tuple(
                f.name for f in obj._meta.concrete_fields if f.name not in editable and f.name not in fields
            )
        return fields

    def get_change_actions(self, request, object_id, form_url):
        obj = self.get_object(request, object_id)
        if not obj:
            return ()
        Status = SupplierInvoice.Status
        if obj.status == Status.DRAFT:
            return ("submit_action", "cancel_action")
        if obj.status == Status.PENDING_PAYMENT:
            return ("mark_paid_action", "cancel_action", "void_action")
        if obj.status == Status.PARTIALLY_PAID:
            return ("mark_paid_action", "void_action")
        return ()

    def save_model(self, request, obj, form, change):
        if not change:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        apply_totals(form.instance)

    @action(label="Submit")
    def submit_action(self, request, obj):
        self.run_service(request, supplier_invoices.submit_supplier_invoice, obj, "Submit")

    @action(label="Mark paid")
    def mark_paid_action(self, request, obj):
        self.run_service(request, supplier_invoices.mark_supplier_invoice_paid, obj, "Mark paid")

    @action(label="Cancel invoice")
    def cancel_action(self, request, obj):
        self.run_service(request, supplier_invoices.cancel_supplier_invoice, obj, "Cancel")

    @action(label="Void invoice")
    def void_action(self, request, obj):
        self.run_service(request, supplier_invoices.void_supplier_invoice, obj, "Void")
