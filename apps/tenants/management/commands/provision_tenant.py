"""
Management command to provision a tenant with its administrator.
"""
import getpass

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import AuthzError
from apps.rbac.services import AuthService
from apps.tenants.services import ProvisioningRequest, TenantProvisioner


class Command(BaseCommand):
    help = 'Create a tenant, its TenantAdmin role and its administrator in one transaction'

    def add_arguments(self, parser):
        parser.add_argument('--name', type=str, required=True, help='Tenant name')
        parser.add_argument('--slug', type=str, required=True, help='Globally unique tenant slug')
        parser.add_argument('--admin-email', type=str, required=True, help='Administrator email')
        parser.add_argument('--admin-first-name', type=str, default='', help='Administrator first name')
        parser.add_argument('--admin-last-name', type=str, default='', help='Administrator last name')
        parser.add_argument('--admin-password', type=str, help='Administrator password (prompted if omitted)')
        parser.add_argument('--contact-email', type=str, default=None, help='Tenant contact email')

    def handle(self, *args, **options):
        password = options.get('admin_password') or getpass.getpass('Administrator password: ')
        if not password:
            raise CommandError('A password is required')

        request = ProvisioningRequest(
            tenant_name=options['name'],
            slug=options['slug'],
            contact_email=options.get('contact_email'),
            admin_email=options['admin_email'],
            admin_first_name=options['admin_first_name'],
            admin_last_name=options['admin_last_name'],
            admin_password_hash=AuthService.hash_password(password),
        )

        try:
            result = TenantProvisioner().provision(request)
        except AuthzError as e:
            raise CommandError(e.message)

        self.stdout.write(self.style.SUCCESS(f"Provisioned tenant '{options['slug']}'"))
        self.stdout.write(f'  tenant_id:     {result.tenant_id}')
        self.stdout.write(f'  admin_user_id: {result.admin_user_id}')
        self.stdout.write(f'  admin_role_id: {result.admin_role_id}')
