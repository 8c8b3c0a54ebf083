from django.contrib import admin
from guardian.admin import GuardedModelAdmin

from core.models import Entity, NumberSeries, UserProfile


@admin.register(Entity)
class EntityAdmin(GuardedModelAdmin, admin.ModelAdmin):
    list_display = ("id", "name", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name",)


@admin.register(NumberSeries)
class NumberSeriesAdmin(admin.ModelAdmin):
    list_display = ("entity", "code", "prefix", "next_number", "min_width")
    list_filter = ("entity",)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "entity", "is_entity_admin")
    list_filter = ("entity", "is_entity_admin")
