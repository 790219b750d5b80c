"""
Tests for the claim catalog: grammar, scope classification, the hierarchy
rules and catalog synchronization.
"""
import pytest
from hypothesis import given, strategies as st

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.rbac.catalog import (
    BUSINESS_OWNER, BYPASS_MARKERS, CROSS_TENANT_ACCESS, DEFAULT_MASTER_CLAIMS, SYSTEM_ADMIN,
    ClaimCatalog, ClaimDefinition, PermissionScope, can_grant, hierarchy_allows, is_valid_permission,
    markers_allow, scope_of,
)
from apps.rbac.models import MasterClaim, Role, RoleClaim


segment = st.text(alphabet='abcdefghijklmnopqrstuvwxyz0123456789_-', min_size=1, max_size=8)
bare_permission = st.lists(segment, min_size=1, max_size=4).map('.'.join)
prefix = st.sampled_from(['', 'global.', 'system.', 'business.', 'cross.'])
permission = st.builds(lambda p, body: p + body, prefix, bare_permission)


class TestGrammar:

    @pytest.mark.parametrize('value', [
        'users.view', 'users.manage.roles', 'global.tenants.delete', 'a', 'x_y-z.1',
    ])
    def test_valid_permissions(self, value):
        assert is_valid_permission(value)

    @pytest.mark.parametrize('value', [
        '', 'Users.view', 'users..view', '.users', 'users.', 'users view', 'users:view', None, 42,
    ])
    def test_invalid_permissions(self, value):
        assert not is_valid_permission(value)

    @pytest.mark.parametrize('value, scope', [
        ('users.view', PermissionScope.TENANT),
        ('global.tenants.view', PermissionScope.GLOBAL),
        ('system.logs.view', PermissionScope.SYSTEM),
        ('business.owner', PermissionScope.BUSINESS),
        ('cross.tenant.access', PermissionScope.CROSS),
        ('globalish.thing', PermissionScope.TENANT),
    ])
    def test_scope_of(self, value, scope):
        assert scope_of(value) is scope


class TestHierarchy:

    @given(permission)
    def test_business_owner_grants_everything(self, value):
        assert hierarchy_allows({BUSINESS_OWNER}, value)

    @given(permission)
    def test_system_admin_grants_tenant_system_and_global(self, value):
        expected = scope_of(value) in (PermissionScope.TENANT, PermissionScope.SYSTEM, PermissionScope.GLOBAL) \
            or value == SYSTEM_ADMIN
        assert hierarchy_allows({SYSTEM_ADMIN}, value) is expected

    @given(permission.filter(lambda value: value != CROSS_TENANT_ACCESS))
    def test_cross_tenant_access_grants_only_global(self, value):
        assert hierarchy_allows({CROSS_TENANT_ACCESS}, value) is value.startswith('global.')

    @given(st.frozensets(permission, max_size=5), permission)
    def test_without_markers_membership_decides(self, held, value):
        held = held - BYPASS_MARKERS
        assert hierarchy_allows(held, value) is (value in held)

    def test_lower_bypass_never_grants_higher_marker(self):
        assert not hierarchy_allows({SYSTEM_ADMIN}, BUSINESS_OWNER)
        assert not hierarchy_allows({SYSTEM_ADMIN}, CROSS_TENANT_ACCESS)
        assert not hierarchy_allows({CROSS_TENANT_ACCESS}, SYSTEM_ADMIN)
        assert not hierarchy_allows({CROSS_TENANT_ACCESS}, BUSINESS_OWNER)

    def test_accepts_any_iterable(self):
        assert hierarchy_allows(['users.view'], 'users.view')
        assert hierarchy_allows((value for value in [SYSTEM_ADMIN]), 'roles.edit')


class TestCanGrant:

    @pytest.mark.parametrize('held, value, allowed', [
        ({'users.view'}, 'users.view', True),
        ({'users.view'}, 'users.delete', False),
        ({'roles.manage.permissions'}, BUSINESS_OWNER, False),
        ({'roles.manage.permissions'}, SYSTEM_ADMIN, False),
        ({'roles.manage.permissions'}, CROSS_TENANT_ACCESS, False),
        ({BUSINESS_OWNER}, BUSINESS_OWNER, True),
        ({BUSINESS_OWNER}, 'global.tenants.delete', True),
        ({SYSTEM_ADMIN}, BUSINESS_OWNER, False),
        ({SYSTEM_ADMIN}, SYSTEM_ADMIN, True),
        ({SYSTEM_ADMIN}, CROSS_TENANT_ACCESS, True),
        ({SYSTEM_ADMIN}, 'users.delete', True),
        ({SYSTEM_ADMIN}, 'business.billing', False),
        ({CROSS_TENANT_ACCESS}, SYSTEM_ADMIN, False),
        ({CROSS_TENANT_ACCESS}, CROSS_TENANT_ACCESS, True),
        ({CROSS_TENANT_ACCESS}, 'global.roles.view', True),
        ({CROSS_TENANT_ACCESS}, 'roles.view', False),
    ])
    def test_can_grant(self, held, value, allowed):
        assert can_grant(held, value) is allowed

    @given(st.frozensets(permission, max_size=6))
    def test_business_owner_is_granted_only_by_business_owner(self, held):
        assert can_grant(held, BUSINESS_OWNER) == (BUSINESS_OWNER in held)

    @given(st.frozensets(permission, max_size=6), permission)
    def test_without_markers_only_held_values_are_granted(self, held, value):
        held = held - BYPASS_MARKERS
        assert can_grant(held, value) == (value in held)


class TestMarkersAllow:

    def test_only_markers_count(self):
        assert not markers_allow({'roles.view'}, ['roles.view'])
        assert markers_allow({SYSTEM_ADMIN, 'roles.view'}, ['roles.view'])

    def test_cross_tenant_access_covers_only_global(self):
        assert markers_allow({CROSS_TENANT_ACCESS}, ['users.delete', 'global.users.delete'])
        assert not markers_allow({CROSS_TENANT_ACCESS}, ['users.delete'])


class TestDefaultCatalog:

    def test_default_values_are_unique_and_valid(self):
        values = [definition.claim_value for definition in DEFAULT_MASTER_CLAIMS]
        assert len(values) == len(set(values))
        assert all(is_valid_permission(value) for value in values)

    def test_prefixed_defaults_are_not_tenant_scoped(self):
        for definition in DEFAULT_MASTER_CLAIMS:
            if scope_of(definition.claim_value) is not PermissionScope.TENANT:
                assert not definition.is_tenant_scoped, definition.claim_value

    def test_bypass_markers_are_in_catalog(self):
        values = {definition.claim_value for definition in DEFAULT_MASTER_CLAIMS}
        assert BYPASS_MARKERS <= values


@pytest.mark.django_db
class TestClaimCatalog:

    def test_migration_seeds_catalog(self):
        assert MasterClaim.objects.count() == len(DEFAULT_MASTER_CLAIMS)
        assert MasterClaim.objects.by_value('users.view').claim_type == 'permission'

    def test_get_unknown_raises_not_found(self):
        with pytest.raises(NotFoundError):
            ClaimCatalog().get('nope.nothing')

    def test_resolve_reports_unknown_values(self):
        with pytest.raises(ValidationError) as exc_info:
            ClaimCatalog().resolve(['users.view', 'made.up', 'also.made.up'])
        assert exc_info.value.details == {'unknown': ['made.up', 'also.made.up']}

    def test_resolve_reports_malformed_values(self):
        with pytest.raises(ValidationError) as exc_info:
            ClaimCatalog().resolve(['users.view', 'Bad Value'])
        assert exc_info.value.details == {'malformed': ['Bad Value']}

    def test_resolve_returns_rows_by_value(self):
        found = ClaimCatalog().resolve(['users.view', 'roles.view', 'users.view'])
        assert set(found) == {'users.view', 'roles.view'}
        assert found['roles.view'].category == 'roles'

    def test_default_admin_claims(self):
        claims = ClaimCatalog().default_admin_claims()

        assert len(claims) == 21
        assert 'users.view' in claims
        assert 'audit.view' in claims
        assert 'reports.export' in claims
        assert not any(scope_of(value) is not PermissionScope.TENANT for value in claims)

    def test_register_and_duplicate(self):
        catalog = ClaimCatalog()
        definition = ClaimDefinition('invoices.view', 'View Invoices', 'billing')

        claim = catalog.register(definition)
        assert claim.is_tenant_scoped

        with pytest.raises(ConflictError):
            catalog.register(definition)

    def test_register_rejects_tenant_scoped_prefixed_value(self):
        with pytest.raises(ValidationError):
            ClaimCatalog().register(ClaimDefinition('global.invoices.view', 'View', 'billing'))

    def test_sync_is_idempotent(self):
        result = ClaimCatalog().sync()
        assert result.created == []
        assert result.updated == []
        assert result.removed == []

    def test_sync_restores_changed_metadata(self):
        MasterClaim.objects.filter(claim_value='users.view').update(display_name='Changed')

        result = ClaimCatalog().sync()

        assert result.updated == ['users.view']
        assert MasterClaim.objects.by_value('users.view').display_name == 'View Users'

    def test_sync_prune_removes_extra_entries_and_grants(self, tenant):
        extra = ClaimCatalog().register(ClaimDefinition('invoices.view', 'View Invoices', 'billing'))
        role = Role.objects.create(tenant=tenant, name='Billing')
        RoleClaim.objects.create(role=role, master_claim=extra)

        result = ClaimCatalog().sync(prune=True)

        assert result.removed == ['invoices.view']
        assert not RoleClaim.objects.filter(role=role).exists()

    def test_update_metadata(self):
        claim = ClaimCatalog().update('users.view', display_name='See Users', category='people')

        assert claim.display_name == 'See Users'
        assert MasterClaim.objects.by_value('users.view').category == 'people'

    def test_update_rejects_fixed_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            ClaimCatalog().update('users.view', is_tenant_scoped=False)
        assert exc_info.value.details == {'fields': ['is_tenant_scoped']}

    def test_update_unknown(self):
        with pytest.raises(NotFoundError):
            ClaimCatalog().update('nope.nothing', display_name='x')

    def test_delete_removes_grants(self, tenant):
        extra = ClaimCatalog().register(ClaimDefinition('invoices.view', 'View Invoices', 'billing'))
        role = Role.objects.create(tenant=tenant, name='Billing')
        RoleClaim.objects.create(role=role, master_claim=extra)

        removed = ClaimCatalog().delete('invoices.view')

        assert removed == 1
        assert not MasterClaim.objects.filter(claim_value='invoices.view').exists()
        assert not RoleClaim.objects.filter(role=role).exists()

    @pytest.mark.parametrize('marker', sorted(BYPASS_MARKERS))
    def test_markers_cannot_be_deleted(self, marker):
        with pytest.raises(ValidationError):
            ClaimCatalog().delete(marker)
        assert MasterClaim.objects.filter(claim_value=marker).exists()
