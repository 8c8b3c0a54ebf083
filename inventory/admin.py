from django.contrib import admin
from guardian.admin import GuardedModelAdmin

from core.admin_utils import EntityScopedAdminMixin, ReadOnlyAdminMixin
from inventory.models import StockLedgerEntry


@admin.register(StockLedgerEntry)
class StockLedgerEntryAdmin(ReadOnlyAdminMixin, EntityScopedAdminMixin, GuardedModelAdmin, admin.ModelAdmin):
    list_display = ("moved_at", "product", "variant", "warehouse", "shop", "quantity", "movement_type", "reception_line", "reversal_of")
    list_filter = ("entity", "movement_type", "warehouse", "shop")
    search_fields = ("product__number", "product__name", "note")
    date_hierarchy = "moved_at"
    list_select_related = ("product", "variant", "warehouse", "shop")
