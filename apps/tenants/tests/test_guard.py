"""
Tests for TenantIsolationGuard.
"""
import uuid

import pytest

from apps.core.context import AuthContext, VerifiedIdentity
from apps.core.exceptions import ForbiddenError
from apps.core.permissions import AnyOf, Single
from apps.tenants.guard import ResolutionState, TenantIsolationGuard


def identity(tenant_claim):
    return VerifiedIdentity(user_id=uuid.uuid4(), tenant_claim=tenant_claim)


class TestResolve:

    def test_anonymous_stays_unresolved(self):
        resolution = TenantIsolationGuard.resolve(None)

        assert resolution.state is ResolutionState.UNRESOLVED
        assert not resolution.is_resolved

    def test_valid_claim(self):
        tenant_id = uuid.uuid4()

        resolution = TenantIsolationGuard.resolve(identity(str(tenant_id)))

        assert resolution.is_resolved
        assert resolution.tenant_id == tenant_id

    def test_uuid_claim(self):
        tenant_id = uuid.uuid4()
        assert TenantIsolationGuard.resolve(identity(tenant_id)).tenant_id == tenant_id

    @pytest.mark.parametrize('claim', [None, ''])
    def test_missing_claim(self, claim):
        resolution = TenantIsolationGuard.resolve(identity(claim))

        assert resolution.state is ResolutionState.REJECTED
        assert resolution.reason == 'missing_tenant_claim'

    @pytest.mark.parametrize('claim', ['acme', '1234', 42, ['a']])
    def test_malformed_claim(self, claim):
        resolution = TenantIsolationGuard.resolve(identity(claim))

        assert resolution.state is ResolutionState.REJECTED
        assert resolution.reason == 'malformed_tenant_claim'


class TestOwnership:

    def test_same_tenant(self):
        tenant_id = uuid.uuid4()
        context = AuthContext(user_id=uuid.uuid4(), tenant_id=tenant_id)

        assert TenantIsolationGuard.can_access_tenant(context, tenant_id)
        assert TenantIsolationGuard.can_access_tenant(context, str(tenant_id))
        TenantIsolationGuard.ensure_same_tenant(context, tenant_id)

    def test_other_tenant_is_denied(self):
        context = AuthContext(user_id=uuid.uuid4(), tenant_id=uuid.uuid4(), granted_permissions=frozenset({'users.view'}))

        assert not TenantIsolationGuard.can_access_tenant(context, uuid.uuid4())
        with pytest.raises(ForbiddenError):
            TenantIsolationGuard.ensure_same_tenant(context, uuid.uuid4(), resource='Role:1')

    @pytest.mark.parametrize('marker, requirement, allowed', [
        ('business.owner', None, True),
        ('business.owner', Single('roles.manage.permissions'), True),
        ('business.owner', Single('business.billing'), True),
        ('system.admin', None, False),
        ('system.admin', Single('roles.manage.permissions'), True),
        ('system.admin', Single('system.logs.view'), True),
        ('system.admin', Single('global.roles.edit'), True),
        ('system.admin', Single('business.billing'), False),
        ('cross.tenant.access', None, False),
        ('cross.tenant.access', Single('global.roles.view'), True),
        ('cross.tenant.access', Single('roles.view'), False),
        ('cross.tenant.access', Single('roles.manage.permissions'), False),
        ('cross.tenant.access', Single('system.logs.view'), False),
        ('cross.tenant.access', AnyOf('users.delete', 'global.users.delete'), True),
    ])
    def test_bypass_depends_on_requirement(self, marker, requirement, allowed):
        context = AuthContext(
            user_id=uuid.uuid4(),
            tenant_id=uuid.uuid4(),
            granted_permissions=frozenset({marker, 'roles.view', 'roles.manage.permissions'}),
        )

        assert TenantIsolationGuard.can_access_tenant(context, uuid.uuid4(), requirement) is allowed

    def test_cross_tenant_access_cannot_use_home_tenant_rights_elsewhere(self):
        context = AuthContext(
            user_id=uuid.uuid4(),
            tenant_id=uuid.uuid4(),
            granted_permissions=frozenset({'cross.tenant.access', 'roles.manage.permissions'}),
        )

        with pytest.raises(ForbiddenError):
            TenantIsolationGuard.ensure_same_tenant(
                context, uuid.uuid4(), resource='Role:1', requirement=Single('roles.manage.permissions')
            )

    def test_no_context(self):
        assert not TenantIsolationGuard.can_access_tenant(None, uuid.uuid4())
        with pytest.raises(ForbiddenError):
            TenantIsolationGuard.ensure_same_tenant(None, uuid.uuid4())
