"""
RBAC signals.

When a membership row is deleted, the user's role assignments and direct
claims in that tenant go with it. The global user row is kept.
"""
import logging

from django.db.models.signals import post_delete
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_delete, sender='rbac.UserTenant')
def purge_grants_on_membership_delete(sender, instance, **kwargs):
    from apps.rbac.services import purge_tenant_grants

    claims_deleted, roles_deleted = purge_tenant_grants(instance.user_id, instance.tenant_id)
    if claims_deleted or roles_deleted:
        logger.info(
            f"Purged grants of user {instance.user_id} after membership deletion",
            extra={
                'tenant_id': str(instance.tenant_id),
                'user_id': str(instance.user_id),
                'claims_deleted': claims_deleted,
                'roles_deleted': roles_deleted,
            }
        )
