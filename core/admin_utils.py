"""Admin mixins shared by the procurement admins."""

from core.permissions import grant_document_perms


class EntityScopedAdminMixin:
    """Mixin: after save, assign guardian permissions for visibility.

    This avoids relying on signals (signals don't know the request.user).
    """

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)

        if getattr(obj, "entity", None) is not None and not change:
            grant_document_perms(obj, by=request.user)

    def get_queryset(self, request):
        """Superusers see everything; other users see their own entity only."""
        qs = super().get_queryset(request)
        if request.user.is_superuser:
            return qs
        profile = getattr(request.user, "profile", None)
        if not profile:
            return qs.none()
        if hasattr(qs.model, "entity_id"):
            return qs.filter(entity=profile.entity)
        return qs


class ReadOnlyAdminMixin:
    """Rows are written by services only (ledger entries, state logs)."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
