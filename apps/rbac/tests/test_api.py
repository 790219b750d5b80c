"""
API tests for roles, role templates, permissions and memberships.
"""
import uuid

import pytest

from apps.rbac.models import Role, UserRole, UserTenant
from apps.rbac.stores import ClaimStore
from conftest import TEST_PASSWORD


ADMIN_PERMISSIONS = [
    'users.view', 'users.create', 'users.delete', 'users.invite', 'users.manage.roles',
    'roles.view', 'roles.create', 'roles.edit', 'roles.delete', 'roles.manage.permissions',
    'authorization.view', 'audit.view', 'reports.view', 'dashboard.view', 'tenant.settings.view',
]


@pytest.fixture
def admin(make_member, tenant):
    return make_member(tenant, email='admin@example.com', permissions=ADMIN_PERMISSIONS)


@pytest.fixture
def admin_client(auth_client, admin, tenant):
    return auth_client(admin, tenant)


@pytest.fixture
def role(tenant):
    role = Role.objects.create(tenant=tenant, name='Support')
    ClaimStore().assign_to_role(role.id, ['users.view'])
    return role


@pytest.mark.django_db
class TestAuthentication:

    def test_anonymous_request_is_rejected(self, api_client):
        response = api_client.get('/v1/roles')

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'NOT_AUTHENTICATED'

    def test_missing_permission_is_forbidden(self, auth_client, member, tenant):
        response = auth_client(member, tenant).get('/v1/roles')

        assert response.status_code == 403
        body = response.json()
        assert body['error']['code'] == 'FORBIDDEN'
        assert body['error']['details'] == {'required': ['roles.view']}


@pytest.mark.django_db
class TestLogin:

    def test_login(self, api_client, make_member, tenant):
        user = make_member(tenant, email='login@example.com', permissions=['users.view'])

        response = api_client.post('/v1/auth/login', {
            'email': user.email, 'password': TEST_PASSWORD, 'tenant_id': str(tenant.id),
        }, format='json')

        assert response.status_code == 200
        body = response.json()
        assert body['tenant_id'] == str(tenant.id)
        assert body['permissions'] == ['users.view']
        assert body['token']

    def test_login_bad_password(self, api_client, member, tenant):
        response = api_client.post('/v1/auth/login', {
            'email': member.email, 'password': 'wrong-password', 'tenant_id': str(tenant.id),
        }, format='json')

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'AUTHENTICATION_FAILED'

    def test_login_into_foreign_tenant(self, api_client, member, other_tenant):
        response = api_client.post('/v1/auth/login', {
            'email': member.email, 'password': TEST_PASSWORD, 'tenant_id': str(other_tenant.id),
        }, format='json')

        assert response.status_code == 403

    def test_login_locked_account(self, api_client, member, tenant):
        payload = {'email': member.email, 'password': 'wrong-password', 'tenant_id': str(tenant.id)}
        for _ in range(4):
            api_client.post('/v1/auth/login', payload, format='json')

        response = api_client.post('/v1/auth/login', payload, format='json')

        assert response.status_code == 423
        assert response.json()['error']['code'] == 'ACCOUNT_LOCKED'


@pytest.mark.django_db
class TestRoleEndpoints:

    def test_list_roles(self, admin_client, role):
        response = admin_client.get('/v1/roles')

        assert response.status_code == 200
        names = [item['name'] for item in response.json()['results']]
        assert 'Support' in names

    def test_list_roles_excludes_other_tenants(self, admin_client, other_tenant):
        Role.objects.create(tenant=other_tenant, name='Elsewhere')

        response = admin_client.get('/v1/roles')

        assert 'Elsewhere' not in [item['name'] for item in response.json()['results']]

    def test_create_role(self, admin_client, tenant):
        response = admin_client.post('/v1/roles', {
            'name': 'Auditors', 'permissions': ['audit.view', 'reports.view'],
        }, format='json')

        assert response.status_code == 201
        assert response.json()['permission_count'] == 2
        assert Role.objects.filter(tenant=tenant, name='Auditors').exists()

    def test_create_duplicate_role(self, admin_client, role):
        response = admin_client.post('/v1/roles', {'name': 'Support'}, format='json')

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'CONFLICT'

    def test_create_role_with_unknown_permission(self, admin_client):
        response = admin_client.post('/v1/roles', {
            'name': 'Auditors', 'permissions': ['made.up'],
        }, format='json')

        assert response.status_code == 400
        assert response.json()['error']['details'] == {'unknown': ['made.up']}

    def test_get_role(self, admin_client, role):
        response = admin_client.get(f'/v1/roles/{role.id}')

        assert response.status_code == 200
        assert response.json()['permissions'] == ['users.view']

    def test_get_role_of_other_tenant_is_forbidden(self, admin_client, other_tenant):
        foreign = Role.objects.create(tenant=other_tenant, name='Foreign')

        response = admin_client.get(f'/v1/roles/{foreign.id}')

        assert response.status_code == 403

    def test_get_missing_role(self, admin_client):
        response = admin_client.get(f'/v1/roles/{uuid.uuid4()}')

        assert response.status_code == 404

    def test_update_role(self, admin_client, role):
        response = admin_client.patch(f'/v1/roles/{role.id}', {'name': 'Helpdesk'}, format='json')

        assert response.status_code == 200
        assert response.json()['name'] == 'Helpdesk'

    def test_delete_role(self, admin_client, role):
        response = admin_client.delete(f'/v1/roles/{role.id}')

        assert response.status_code == 204
        assert not Role.objects.filter(id=role.id).exists()


@pytest.mark.django_db
class TestRolePermissionEndpoints:

    def test_add_permissions(self, admin_client, role):
        response = admin_client.post(
            f'/v1/roles/{role.id}/permissions', {'permissions': ['roles.view', 'users.view']}, format='json'
        )

        assert response.status_code == 200
        assert response.json()['permissions'] == ['roles.view', 'users.view']
        assert response.json()['count'] == 2

    def test_add_empty_list_rejected(self, admin_client, role):
        response = admin_client.post(f'/v1/roles/{role.id}/permissions', {'permissions': []}, format='json')

        assert response.status_code == 400

    def test_replace_with_empty_list(self, admin_client, role):
        response = admin_client.put(f'/v1/roles/{role.id}/permissions', {'permissions': []}, format='json')

        assert response.status_code == 200
        assert response.json()['count'] == 0

    def test_remove_permissions(self, admin_client, role):
        response = admin_client.delete(
            f'/v1/roles/{role.id}/permissions', {'permissions': ['users.view']}, format='json'
        )

        assert response.status_code == 200
        assert response.json()['permissions'] == []

    def test_malformed_permission(self, admin_client, role):
        response = admin_client.post(
            f'/v1/roles/{role.id}/permissions', {'permissions': ['Users View']}, format='json'
        )

        assert response.status_code == 400
        assert response.json()['error']['code'] == 'VALIDATION_ERROR'


@pytest.mark.django_db
class TestRoleUserEndpoints:

    def test_assign_and_remove(self, admin_client, role, member):
        url = f'/v1/roles/{role.id}/users'

        first = admin_client.post(url, {'user_id': str(member.id)}, format='json')
        second = admin_client.post(url, {'user_id': str(member.id)}, format='json')

        assert first.status_code == 201
        assert second.status_code == 200

        response = admin_client.delete(f'{url}/{member.id}')
        assert response.status_code == 204

        response = admin_client.delete(f'{url}/{member.id}')
        assert response.status_code == 404

    def test_assign_non_member(self, admin_client, role, user):
        response = admin_client.post(f'/v1/roles/{role.id}/users', {'user_id': str(user.id)}, format='json')

        assert response.status_code == 404


@pytest.mark.django_db
class TestRoleTemplateEndpoints:

    def test_list_templates(self, admin_client):
        response = admin_client.get('/v1/role-templates')

        assert response.status_code == 200
        counts = {item['type']: item['permission_count'] for item in response.json()['templates']}
        assert counts == {'TenantAdmin': 20, 'UserManager': 7, 'Viewer': 5, 'BasicUser': 1}

    def test_create_from_template(self, admin_client, tenant):
        response = admin_client.post('/v1/role-templates/Viewer/roles', {'role_name': 'Readers'}, format='json')

        assert response.status_code == 201
        assert response.json()['permission_count'] == 5

    def test_unknown_template(self, admin_client):
        response = admin_client.post('/v1/role-templates/Root/roles', {'role_name': 'Readers'}, format='json')

        assert response.status_code == 400


@pytest.mark.django_db
class TestPermissionEndpoints:

    def test_catalog(self, admin_client):
        response = admin_client.get('/v1/permissions/catalog', {'category': 'roles'})

        assert response.status_code == 200
        values = [item['claim_value'] for item in response.json()['permissions']]
        assert values == sorted(values)
        assert all(value.startswith('roles.') for value in values)

    def test_check_self(self, auth_client, make_member, tenant):
        user = make_member(tenant, permissions=['users.view'])

        response = auth_client(user, tenant).post(
            '/v1/permissions/check', {'permissions': ['users.view', 'roles.edit']}, format='json'
        )

        assert response.status_code == 200
        assert response.json() == {
            'user_id': str(user.id),
            'has_all': False,
            'has_any': True,
            'granted': ['users.view'],
            'missing': ['roles.edit'],
        }

    def test_check_empty_list(self, auth_client, member, tenant):
        response = auth_client(member, tenant).post('/v1/permissions/check', {'permissions': []}, format='json')

        assert response.json()['has_all'] is True
        assert response.json()['has_any'] is False

    def test_check_other_user_requires_authorization_view(self, auth_client, make_member, member, tenant):
        other = make_member(tenant)

        response = auth_client(member, tenant).post(
            '/v1/permissions/check', {'permissions': ['users.view'], 'user_id': str(other.id)}, format='json'
        )

        assert response.status_code == 403

    def test_effective_permissions(self, admin_client, make_member, tenant):
        user = make_member(tenant, permissions=['users.view'], direct=['dashboard.view'])

        response = admin_client.get(f'/v1/users/{user.id}/permissions')

        assert response.status_code == 200
        assert response.json()['permissions'] == [
            {'value': 'dashboard.view', 'source': 'direct'},
            {'value': 'users.view', 'source': 'role'},
        ]

    def test_own_permissions_need_no_grant(self, auth_client, member, tenant):
        response = auth_client(member, tenant).get(f'/v1/users/{member.id}/permissions')

        assert response.status_code == 200
        assert response.json()['count'] == 0

    def test_grant_and_revoke_direct(self, admin_client, member, tenant):
        url = f'/v1/users/{member.id}/permissions'

        response = admin_client.post(url, {'permissions': ['dashboard.view']}, format='json')
        assert response.status_code == 200
        assert ClaimStore().direct_claims(member.id, tenant.id) == {'dashboard.view'}

        response = admin_client.delete(url, {'permissions': ['dashboard.view']}, format='json')
        assert response.status_code == 200
        assert ClaimStore().direct_claims(member.id, tenant.id) == set()

    def test_platform_grant_requires_holding_it(self, admin_client, member):
        response = admin_client.post(
            f'/v1/users/{member.id}/permissions', {'permissions': ['global.tenants.view']}, format='json'
        )

        assert response.status_code == 403
        assert response.json()['error']['details'] == {'denied': ['global.tenants.view']}

    def test_system_admin_may_grant_global_but_not_business_owner(self, auth_client, make_member, member, tenant):
        sysadmin = make_member(tenant, permissions=['system.admin'])
        client = auth_client(sysadmin, tenant)
        url = f'/v1/users/{member.id}/permissions'

        assert client.post(url, {'permissions': ['global.tenants.view']}, format='json').status_code == 200

        response = client.post(url, {'permissions': ['business.owner']}, format='json')
        assert response.status_code == 403
        assert ClaimStore().direct_claims(member.id, tenant.id) == {'global.tenants.view'}

    def test_catalog_entry(self, admin_client):
        response = admin_client.get('/v1/permissions/catalog/users.view')

        assert response.status_code == 200
        assert response.json()['category'] == 'users'

    def test_catalog_changes_require_system_admin(self, admin_client):
        response = admin_client.post('/v1/permissions/catalog', {
            'claim_value': 'invoices.view', 'display_name': 'View Invoices', 'category': 'billing',
        }, format='json')

        assert response.status_code == 403
        assert admin_client.delete('/v1/permissions/catalog/users.view').status_code == 403

    def test_catalog_crud(self, auth_client, make_member, tenant):
        client = auth_client(make_member(tenant, permissions=['system.admin']), tenant)

        response = client.post('/v1/permissions/catalog', {
            'claim_value': 'global.invoices.view', 'display_name': 'View Invoices', 'category': 'billing',
        }, format='json')
        assert response.status_code == 201
        assert response.json()['is_tenant_scoped'] is False

        response = client.patch(
            '/v1/permissions/catalog/global.invoices.view', {'display_name': 'Read Invoices'}, format='json'
        )
        assert response.status_code == 200
        assert response.json()['display_name'] == 'Read Invoices'

        assert client.delete('/v1/permissions/catalog/global.invoices.view').status_code == 204
        assert client.get('/v1/permissions/catalog/global.invoices.view').status_code == 404

    def test_bypass_marker_cannot_be_deleted(self, auth_client, make_member, tenant):
        client = auth_client(make_member(tenant, permissions=['business.owner']), tenant)

        response = client.delete('/v1/permissions/catalog/system.admin')

        assert response.status_code == 400


@pytest.mark.django_db
class TestMembershipEndpoints:

    def test_list_members(self, admin_client, member):
        response = admin_client.get('/v1/memberships')

        assert response.status_code == 200
        emails = [item['user']['email'] for item in response.json()['results']]
        assert emails == ['admin@example.com', 'member@example.com']

    def test_create_member(self, admin_client, tenant):
        response = admin_client.post('/v1/memberships', {
            'email': 'fresh@example.com', 'password': TEST_PASSWORD,
        }, format='json')

        assert response.status_code == 201
        assert response.json()['status'] == 'active'

    def test_invite_then_accept(self, admin_client, api_client, user, tenant):
        response = admin_client.post('/v1/memberships/invite', {'email': user.email}, format='json')
        assert response.status_code == 201
        assert response.json()['status'] == 'pending'

        pending = admin_client.get('/v1/memberships', {'status': 'pending'})
        assert [item['user']['email'] for item in pending.json()['results']] == [user.email]

        api_client.credentials()
        response = api_client.post('/v1/memberships/accept', {
            'email': user.email, 'password': TEST_PASSWORD, 'tenant_id': str(tenant.id),
        }, format='json')

        assert response.status_code == 200
        assert response.json()['token']
        assert UserTenant.objects.is_active_member(user.id, tenant.id)

    def test_invite_existing_member(self, admin_client, member):
        response = admin_client.post('/v1/memberships/invite', {'email': member.email}, format='json')

        assert response.status_code == 409

    def test_remove_member(self, admin_client, make_member, tenant):
        user = make_member(tenant, permissions=['users.view'])

        response = admin_client.delete(f'/v1/memberships/{user.id}')

        assert response.status_code == 204
        assert not UserTenant.objects.is_active_member(user.id, tenant.id)

    def test_remove_owner_needs_owner(self, admin_client, make_member, tenant):
        owner = make_member(tenant, permissions=['business.owner'])

        response = admin_client.delete(f'/v1/memberships/{owner.id}')

        assert response.status_code == 403
        assert UserTenant.objects.is_active_member(owner.id, tenant.id)


@pytest.mark.django_db
class TestGrantEscalation:

    MARKERS = ['business.owner', 'system.admin', 'cross.tenant.access']

    @pytest.fixture
    def own_role(self, admin, tenant):
        return UserRole.objects.get(user=admin, tenant=tenant).role

    @pytest.mark.parametrize('marker', MARKERS)
    def test_add_marker_to_own_role(self, admin_client, admin, own_role, other_tenant, marker):
        from apps.rbac.services import PermissionResolver

        response = admin_client.post(
            f'/v1/roles/{own_role.id}/permissions', {'permissions': [marker]}, format='json'
        )

        assert response.status_code == 403
        assert response.json()['error']['details'] == {'denied': [marker]}
        assert marker not in ClaimStore().claims_for_role(own_role.id)
        assert not PermissionResolver().has_permission(admin.id, other_tenant.id, 'global.tenants.delete')

    @pytest.mark.parametrize('marker', MARKERS)
    def test_replace_with_marker(self, admin_client, own_role, marker):
        response = admin_client.put(
            f'/v1/roles/{own_role.id}/permissions', {'permissions': ADMIN_PERMISSIONS + [marker]}, format='json'
        )

        assert response.status_code == 403
        assert marker not in ClaimStore().claims_for_role(own_role.id)

    @pytest.mark.parametrize('marker', MARKERS)
    def test_create_role_with_marker(self, admin_client, tenant, marker):
        response = admin_client.post('/v1/roles', {'name': 'Escalated', 'permissions': [marker]}, format='json')

        assert response.status_code == 403
        assert not Role.objects.filter(tenant=tenant, name='Escalated').exists()

    @pytest.mark.parametrize('marker', MARKERS)
    def test_direct_grant_of_marker(self, admin_client, admin, tenant, marker):
        response = admin_client.post(f'/v1/users/{admin.id}/permissions', {'permissions': [marker]}, format='json')

        assert response.status_code == 403
        assert ClaimStore().direct_claims(admin.id, tenant.id) == set()

    def test_assigning_owner_role_to_self(self, admin_client, admin, tenant):
        owner_role = Role.objects.create(tenant=tenant, name='Business Owner')
        ClaimStore().assign_to_role(owner_role.id, ['business.owner'])

        response = admin_client.post(f'/v1/roles/{owner_role.id}/users', {'user_id': str(admin.id)}, format='json')

        assert response.status_code == 403
        assert not owner_role.user_roles.filter(user=admin).exists()

    def test_stripping_marker_from_role(self, admin_client, tenant):
        owner_role = Role.objects.create(tenant=tenant, name='Business Owner')
        ClaimStore().assign_to_role(owner_role.id, ['business.owner'])

        response = admin_client.put(f'/v1/roles/{owner_role.id}/permissions', {'permissions': []}, format='json')

        assert response.status_code == 403
        assert ClaimStore().claims_for_role(owner_role.id) == ['business.owner']

    def test_granting_value_not_held(self, admin_client, own_role):
        response = admin_client.post(
            f'/v1/roles/{own_role.id}/permissions', {'permissions': ['reports.export']}, format='json'
        )

        assert response.status_code == 403
        assert response.json()['error']['details'] == {'denied': ['reports.export']}

    def test_template_needs_every_permission(self, auth_client, make_member, tenant):
        creator = make_member(tenant, permissions=['roles.create', 'users.view', 'roles.view'])

        response = auth_client(creator, tenant).post(
            '/v1/role-templates/TenantAdmin/roles', {'role_name': 'Admins'}, format='json'
        )

        assert response.status_code == 403
        assert not Role.objects.filter(tenant=tenant, name='Admins').exists()

    def test_owner_may_grant_markers(self, auth_client, make_member, member, tenant):
        owner = make_member(tenant, permissions=['business.owner'])

        response = auth_client(owner, tenant).post(
            f'/v1/users/{member.id}/permissions', {'permissions': ['system.admin']}, format='json'
        )

        assert response.status_code == 200


@pytest.mark.django_db
class TestCrossTenantResources:

    @pytest.fixture
    def foreign_role(self, other_tenant):
        role = Role.objects.create(tenant=other_tenant, name='Victim')
        ClaimStore().assign_to_role(role.id, ['users.view'])
        return role

    @pytest.fixture
    def cross_client(self, auth_client, make_member, tenant):
        caller = make_member(
            tenant, permissions=['roles.view', 'roles.edit', 'roles.delete', 'roles.manage.permissions',
                                 'cross.tenant.access']
        )
        return auth_client(caller, tenant)

    def test_cross_tenant_access_cannot_replace_foreign_role_permissions(self, cross_client, foreign_role):
        response = cross_client.put(f'/v1/roles/{foreign_role.id}/permissions', {'permissions': []}, format='json')

        assert response.status_code == 403
        assert ClaimStore().claims_for_role(foreign_role.id) == ['users.view']

    def test_cross_tenant_access_cannot_read_or_delete_foreign_role(self, cross_client, foreign_role):
        assert cross_client.get(f'/v1/roles/{foreign_role.id}').status_code == 403
        assert cross_client.patch(f'/v1/roles/{foreign_role.id}', {'name': 'X'}, format='json').status_code == 403
        assert cross_client.delete(f'/v1/roles/{foreign_role.id}').status_code == 403
        assert Role.objects.filter(id=foreign_role.id, name='Victim').exists()

    def test_system_admin_may_manage_foreign_role(self, auth_client, make_member, tenant, foreign_role):
        sysadmin = make_member(tenant, permissions=['system.admin'])

        response = auth_client(sysadmin, tenant).get(f'/v1/roles/{foreign_role.id}')

        assert response.status_code == 200


@pytest.mark.django_db
class TestSessionEndpoints:

    def test_me(self, auth_client, make_member, tenant):
        user = make_member(tenant, permissions=['users.view'], direct=['dashboard.view'])

        response = auth_client(user, tenant).get('/v1/auth/me')

        assert response.status_code == 200
        body = response.json()
        assert body['user']['email'] == user.email
        assert body['tenant_id'] == str(tenant.id)
        assert body['permissions'] == ['dashboard.view', 'users.view']
        assert len(body['roles']) == 1

    def test_me_requires_token(self, api_client):
        assert api_client.get('/v1/auth/me').status_code == 401

    def test_refresh_returns_new_token_with_current_permissions(self, auth_client, make_member, tenant):
        user = make_member(tenant, permissions=['users.view'])
        client = auth_client(user, tenant)
        ClaimStore().assign_direct(user.id, tenant.id, ['dashboard.view'])

        response = client.post('/v1/auth/refresh')

        assert response.status_code == 200
        assert response.json()['permissions'] == ['dashboard.view', 'users.view']
        assert response.json()['token']

    def test_logout_revokes_token(self, auth_client, make_member, tenant):
        user = make_member(tenant, permissions=['roles.view'])
        client = auth_client(user, tenant)

        assert client.post('/v1/auth/logout').status_code == 204

        response = client.get('/v1/roles')
        assert response.status_code == 401

    def test_login_after_logout(self, api_client, auth_client, make_member, tenant):
        user = make_member(tenant, permissions=['roles.view'])
        auth_client(user, tenant).post('/v1/auth/logout')

        api_client.credentials()
        response = api_client.post('/v1/auth/login', {
            'email': user.email, 'password': TEST_PASSWORD, 'tenant_id': str(tenant.id),
        }, format='json')
        token = response.json()['token']
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')

        assert api_client.get('/v1/roles').status_code == 200
