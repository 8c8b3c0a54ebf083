"""Guardian helpers for entity-scoped document visibility.

When a procurement document is created (from a service or from admin), the
creating user and every entity admin (UserProfile.is_entity_admin=True) get
object-level view/change/delete permissions on it. No signal tries to infer
the user; callers pass it explicitly.
"""

from guardian.shortcuts import assign_perm

from core.models import UserProfile

DEFAULT_PERMS = ("view", "change", "delete")


def assign_object_perms_to_user(user, obj, perms=DEFAULT_PERMS):
    """Assign view/change/delete perms for obj to a user."""
    if not user or not user.is_authenticated:
        return
    app_label = obj._meta.app_label
    model_name = obj._meta.model_name
    for p in perms:
        assign_perm(f"{app_label}.{p}_{model_name}", user, obj)


def assign_object_perms_to_entity_admins(entity, obj, perms=DEFAULT_PERMS):
    """Assign perms for obj to all users marked as entity admin."""
    qs = UserProfile.objects.filter(entity=entity, is_entity_admin=True).select_related("user")
    for prof in qs:
        assign_object_perms_to_user(prof.user, obj, perms=perms)


def grant_document_perms(obj, by=None):
    """Creator + entity admins may see and edit a new document."""
    assign_object_perms_to_user(by, obj)
    assign_object_perms_to_entity_admins(obj.entity, obj)
