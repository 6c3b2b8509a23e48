"""
RBAC signals.

Keeps the resolver's per-principal grant cache consistent with the Role
Store: any saved or deleted grant drops the holder's cached grant list
once the surrounding transaction commits.
"""
from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from apps.rbac.models import RoleGrant


def _invalidate_grants(user_id):
    from apps.rbac.services import AuthorizationResolver

    AuthorizationResolver.invalidate(user_id)
    # A concurrent reader may re-cache the pre-commit rows; drop again after commit.
    transaction.on_commit(lambda: AuthorizationResolver.invalidate(user_id))


@receiver(post_save, sender=RoleGrant)
def invalidate_on_grant_saved(sender, instance, **kwargs):
    _invalidate_grants(instance.user_id)


@receiver(post_delete, sender=RoleGrant)
def invalidate_on_grant_deleted(sender, instance, **kwargs):
    _invalidate_grants(instance.user_id)
