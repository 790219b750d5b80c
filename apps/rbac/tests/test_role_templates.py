"""
Tests for the fixed role templates and role creation from a template.
"""
import pytest

from apps.core.context import AuthContext
from apps.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.rbac.catalog import DEFAULT_MASTER_CLAIMS, PermissionScope, scope_of
from apps.rbac.models import Role
from apps.rbac.role_templates import RoleTemplateCatalog, RoleTemplateType
from apps.rbac.stores import ClaimStore


class TestTemplates:

    @pytest.mark.parametrize('template_type, count', [
        (RoleTemplateType.TENANT_ADMIN, 20),
        (RoleTemplateType.USER_MANAGER, 7),
        (RoleTemplateType.VIEWER, 5),
        (RoleTemplateType.BASIC_USER, 1),
    ])
    def test_permission_counts(self, template_type, count):
        template = RoleTemplateCatalog.get_template(template_type)
        assert template.permission_count == count
        assert len(set(template.permissions)) == count

    def test_tenant_admin_contents(self):
        permissions = RoleTemplateCatalog.get_template(RoleTemplateType.TENANT_ADMIN).permissions

        assert 'users.view' in permissions
        assert 'audit.view' in permissions

    def test_templates_use_only_catalogued_tenant_permissions(self):
        catalogued = {definition.claim_value for definition in DEFAULT_MASTER_CLAIMS}
        for template in RoleTemplateCatalog.list_templates():
            for permission in template.permissions:
                assert permission in catalogued
                assert scope_of(permission) is PermissionScope.TENANT

    def test_lookup_by_string(self):
        assert RoleTemplateCatalog.get_template('Viewer').type is RoleTemplateType.VIEWER

    def test_unknown_type_is_a_programming_error(self):
        with pytest.raises(ValueError):
            RoleTemplateCatalog.get_template('SuperUser')

    def test_parse_rejects_unknown_input(self):
        with pytest.raises(ValidationError) as exc_info:
            RoleTemplateCatalog.parse('SuperUser')
        assert 'TenantAdmin' in exc_info.value.details['available']

    def test_list_is_stable(self):
        types = [template.type for template in RoleTemplateCatalog.list_templates()]
        assert types == list(RoleTemplateType)


@pytest.mark.django_db
class TestCreateRoleFromTemplate:

    def test_creates_role_with_permissions(self, tenant):
        role = RoleTemplateCatalog().create_role_from_template(tenant.id, RoleTemplateType.VIEWER, 'Auditors')

        assert role.tenant_id == tenant.id
        assert role.description == 'Read-only access to most resources'
        assert ClaimStore().claims_for_role(role.id) == sorted(
            RoleTemplateCatalog.get_template(RoleTemplateType.VIEWER).permissions
        )

    def test_custom_description(self, tenant):
        role = RoleTemplateCatalog().create_role_from_template(
            tenant.id, RoleTemplateType.BASIC_USER, 'Staff', description='Front desk'
        )
        assert role.description == 'Front desk'

    def test_duplicate_name_conflicts(self, tenant):
        catalog = RoleTemplateCatalog()
        catalog.create_role_from_template(tenant.id, RoleTemplateType.VIEWER, 'Auditors')

        with pytest.raises(ConflictError):
            catalog.create_role_from_template(tenant.id, RoleTemplateType.BASIC_USER, 'Auditors')

        assert Role.objects.filter(tenant=tenant, name='Auditors').count() == 1

    def test_same_name_in_other_tenant_is_allowed(self, tenant, other_tenant):
        catalog = RoleTemplateCatalog()
        catalog.create_role_from_template(tenant.id, RoleTemplateType.VIEWER, 'Auditors')
        catalog.create_role_from_template(other_tenant.id, RoleTemplateType.VIEWER, 'Auditors')

        assert Role.objects.filter(name='Auditors').count() == 2

    def test_unknown_tenant(self, db):
        import uuid
        with pytest.raises(NotFoundError):
            RoleTemplateCatalog().create_role_from_template(uuid.uuid4(), RoleTemplateType.VIEWER, 'Auditors')

    def test_blank_name(self, tenant):
        with pytest.raises(ValidationError):
            RoleTemplateCatalog().create_role_from_template(tenant.id, RoleTemplateType.VIEWER, '  ')

    def test_caller_must_hold_every_template_permission(self, tenant):
        import uuid
        reader = AuthContext(user_id=uuid.uuid4(), tenant_id=tenant.id, granted_permissions=frozenset({'users.view'}))

        with pytest.raises(ForbiddenError) as exc_info:
            RoleTemplateCatalog().create_role_from_template(
                tenant.id, RoleTemplateType.VIEWER, 'Auditors', granted_by=reader
            )

        assert 'users.view' not in exc_info.value.details['denied']
        assert not Role.objects.filter(tenant=tenant, name='Auditors').exists()

    def test_system_admin_may_use_any_template(self, tenant):
        import uuid
        admin = AuthContext(user_id=uuid.uuid4(), tenant_id=tenant.id, granted_permissions=frozenset({'system.admin'}))

        role = RoleTemplateCatalog().create_role_from_template(
            tenant.id, RoleTemplateType.TENANT_ADMIN, 'Admins', granted_by=admin
        )

        assert len(ClaimStore().claims_for_role(role.id)) == 20
