from django.contrib import admin
from guardian.admin import GuardedModelAdmin

from core.admin_utils import EntityScopedAdminMixin
from masterdata.models import Product, ProductVariant, Supplier, Warehouse, Shop


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0


@admin.register(Product)
class ProductAdmin(EntityScopedAdminMixin, GuardedModelAdmin, admin.ModelAdmin):
    inlines = [ProductVariantInline]
    list_display = ("entity", "number", "name", "is_stock_item", "purchase_cost")
    list_filter = ("entity", "is_stock_item")
    search_fields = ("number", "name")


@admin.register(Supplier)
class SupplierAdmin(EntityScopedAdminMixin, GuardedModelAdmin, admin.ModelAdmin):
    list_display = ("entity", "number", "name", "is_active")
    list_filter = ("entity", "is_active")
    search_fields = ("number", "name")


@admin.register(Warehouse)
class WarehouseAdmin(EntityScopedAdminMixin, GuardedModelAdmin, admin.ModelAdmin):
    list_display = ("entity", "code", "name")
    list_filter = ("entity",)


@admin.register(Shop)
class ShopAdmin(EntityScopedAdminMixin, GuardedModelAdmin, admin.ModelAdmin):
    list_display = ("entity", "code", "name")
    list_filter = ("entity",)
