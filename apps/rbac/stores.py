"""
ClaimStore: persistence port for role claims and direct user claims.

Mutations run inside one UnitOfWork transaction each, so a concurrent
reader sees either the old claim set or the new one, never an empty
intermediate state during a replace. Raw database errors are translated
to InternalError before leaving this module.
"""
import logging
from typing import FrozenSet, Iterable, List, Optional, Set

from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.transactions import CancellationToken, UnitOfWork, translate_database_errors
from apps.rbac.catalog import BYPASS_MARKERS, ClaimCatalog, is_valid_permission
from apps.rbac.models import Role, RoleClaim, UserClaim, UserTenant

logger = logging.getLogger(__name__)


def _dedupe(values: Iterable[str]) -> List[str]:
    if isinstance(values, str):
        raise ValidationError('Permissions must be a list of strings')
    return list(dict.fromkeys(values))


class ClaimStore:
    """
    CRUD over RoleClaim / UserClaim rows.

    Assign operations have set-insert semantics keyed by (role, value) or
    (user, tenant, value); calling them twice never duplicates a row.
    """

    def __init__(self, catalog: Optional[ClaimCatalog] = None, cancellation: Optional[CancellationToken] = None):
        self.catalog = catalog or ClaimCatalog()
        self.cancellation = cancellation

    def _unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(cancellation=self.cancellation)

    # ------------------------------------------------------------------
    # Role claims
    # ------------------------------------------------------------------

    def assign_to_role(self, role_id, claim_values: Iterable[str]) -> int:
        """Attach permissions to a role. Returns the number of new rows."""
        values = self._require_values(claim_values)

        def apply(tx):
            role = self._get_role(role_id)
            return self._insert_role_claims(role, values)

        with translate_database_errors('claims.assign_to_role'):
            created = self._unit_of_work().with_transaction(apply)

        logger.info(
            f"Assigned {created} permission(s) to role {role_id}",
            extra={'role_id': str(role_id), 'requested': values}
        )
        return created

    def remove_from_role(self, role_id, claim_values: Iterable[str]) -> int:
        """Detach permissions from a role. Returns the number of rows removed."""
        values = self._require_values(claim_values, check_grammar=True)

        def apply(tx):
            role = self._get_role(role_id)
            deleted, _ = RoleClaim.objects.filter(
                role=role,
                master_claim__claim_value__in=values,
            ).delete()
            return deleted

        with translate_database_errors('claims.remove_from_role'):
            removed = self._unit_of_work().with_transaction(apply)

        logger.info(
            f"Removed {removed} permission(s) from role {role_id}",
            extra={'role_id': str(role_id), 'requested': values}
        )
        return removed

    def replace_role_claims(self, role_id, claim_values: Iterable[str]) -> int:
        """
        Make the role's claim set exactly ``claim_values``.

        Delete-all then insert, in one transaction. An empty list leaves the
        role with zero claims.
        """
        values = _dedupe(claim_values)

        def apply(tx):
            role = self._get_role(role_id)
            claims = self.catalog.resolve(values) if values else {}
            RoleClaim.objects.filter(role=role).delete()
            tx.checkpoint()
            RoleClaim.objects.bulk_create(
                [RoleClaim(role=role, master_claim=claims[value]) for value in values]
            )
            return len(values)

        with translate_database_errors('claims.replace_role_claims'):
            count = self._unit_of_work().with_transaction(apply)

        logger.info(
            f"Replaced claims of role {role_id} ({count} permission(s))",
            extra={'role_id': str(role_id)}
        )
        return count

    def claims_for_role(self, role_id) -> List[str]:
        with translate_database_errors('claims.claims_for_role'):
            return sorted(
                RoleClaim.objects.filter(role_id=role_id)
                .values_list('master_claim__claim_value', flat=True)
            )

    # ------------------------------------------------------------------
    # Direct user claims
    # ------------------------------------------------------------------

    def assign_direct(self, user_id, tenant_id, claim_values: Iterable[str]) -> int:
        """Grant permissions directly to a user inside one tenant."""
        values = self._require_values(claim_values)

        def apply(tx):
            self._require_active_membership(user_id, tenant_id)
            claims = self.catalog.resolve(values)
            existing = set(
                UserClaim.objects.filter(
                    user_id=user_id,
                    tenant_id=tenant_id,
                    master_claim__claim_value__in=values,
                ).values_list('master_claim__claim_value', flat=True)
            )
            new_rows = [
                UserClaim(user_id=user_id, tenant_id=tenant_id, master_claim=claims[value])
                for value in values if value not in existing
            ]
            UserClaim.objects.bulk_create(new_rows, ignore_conflicts=True)
            return len(new_rows)

        with translate_database_errors('claims.assign_direct'):
            created = self._unit_of_work().with_transaction(apply)

        logger.info(
            f"Granted {created} direct permission(s) to user {user_id}",
            extra={'user_id': str(user_id), 'tenant_id': str(tenant_id), 'requested': values}
        )
        return created

    def remove_direct(self, user_id, tenant_id, claim_values: Iterable[str]) -> int:
        values = self._require_values(claim_values, check_grammar=True)

        def apply(tx):
            deleted, _ = UserClaim.objects.filter(
                user_id=user_id,
                tenant_id=tenant_id,
                master_claim__claim_value__in=values,
            ).delete()
            return deleted

        with translate_database_errors('claims.remove_direct'):
            removed = self._unit_of_work().with_transaction(apply)

        logger.info(
            f"Revoked {removed} direct permission(s) from user {user_id}",
            extra={'user_id': str(user_id), 'tenant_id': str(tenant_id), 'requested': values}
        )
        return removed

    # ------------------------------------------------------------------
    # Read paths feeding PermissionResolver
    # ------------------------------------------------------------------

    def claims_for_user_roles(self, user_id, tenant_id=None) -> Set[str]:
        """Permissions reaching the user through role assignments."""
        filters = {'role__user_roles__user_id': user_id}
        if tenant_id is not None:
            filters['role__user_roles__tenant_id'] = tenant_id

        with translate_database_errors('claims.claims_for_user_roles'):
            return set(
                RoleClaim.objects.filter(**filters)
                .values_list('master_claim__claim_value', flat=True)
            )

    def direct_claims(self, user_id, tenant_id=None) -> Set[str]:
        filters = {'user_id': user_id}
        if tenant_id is not None:
            filters['tenant_id'] = tenant_id

        with translate_database_errors('claims.direct_claims'):
            return set(
                UserClaim.objects.filter(**filters)
                .values_list('master_claim__claim_value', flat=True)
            )

    def bypass_markers(self, user_id) -> FrozenSet[str]:
        """Bypass markers held through any role or direct grant, in any tenant."""
        with translate_database_errors('claims.bypass_markers'):
            via_roles = RoleClaim.objects.filter(
                role__user_roles__user_id=user_id,
                master_claim__claim_value__in=BYPASS_MARKERS,
            ).values_list('master_claim__claim_value', flat=True)
            direct = UserClaim.objects.filter(
                user_id=user_id,
                master_claim__claim_value__in=BYPASS_MARKERS,
            ).values_list('master_claim__claim_value', flat=True)
            return frozenset(via_roles) | frozenset(direct)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert_role_claims(self, role: Role, values: List[str]) -> int:
        claims = self.catalog.resolve(values)
        existing = set(
            RoleClaim.objects.filter(role=role, master_claim__claim_value__in=values)
            .values_list('master_claim__claim_value', flat=True)
        )
        new_rows = [
            RoleClaim(role=role, master_claim=claims[value])
            for value in values if value not in existing
        ]
        RoleClaim.objects.bulk_create(new_rows, ignore_conflicts=True)
        return len(new_rows)

    def _get_role(self, role_id) -> Role:
        role = Role.objects.filter(id=role_id).first()
        if role is None:
            raise NotFoundError('Role not found', {'role_id': str(role_id)})
        return role

    def _require_active_membership(self, user_id, tenant_id):
        if not UserTenant.objects.is_active_member(user_id, tenant_id):
            raise NotFoundError(
                'User is not an active member of this tenant',
                {'user_id': str(user_id), 'tenant_id': str(tenant_id)}
            )

    def _require_values(self, claim_values, check_grammar=False) -> List[str]:
        values = _dedupe(claim_values)
        if not values:
            raise ValidationError('At least one permission is required')
        if check_grammar:
            malformed = [value for value in values if not is_valid_permission(value)]
            if malformed:
                raise ValidationError('Malformed permission strings', {'malformed': malformed})
        return values
