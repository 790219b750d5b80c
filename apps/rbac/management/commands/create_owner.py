"""
Management command to grant business.owner to a user.

Puts the user in a "Business Owner" role of the given tenant. The role holds
the business.owner marker, which grants every permission in every tenant.
"""
import uuid

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.core.exceptions import AuthzError
from apps.core.transactions import UnitOfWork
from apps.rbac.catalog import BUSINESS_OWNER
from apps.rbac.models import Role, User, UserRole, UserTenant
from apps.rbac.stores import ClaimStore
from apps.tenants.models import Tenant


OWNER_ROLE_NAME = 'Business Owner'


class Command(BaseCommand):
    help = 'Grant business.owner to an existing user through a role in a tenant'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            required=True,
            help='Tenant ID or slug',
        )
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )

    def handle(self, *args, **options):
        tenant = self._find_tenant(options['tenant'])
        user = User.objects.by_email(options['email'])
        if user is None:
            raise CommandError(f"User not found: {options['email']}")

        store = ClaimStore()

        def apply(tx):
            membership, _ = UserTenant.objects.get_or_create(user=user, tenant=tenant)
            if not membership.is_active:
                membership.is_active = True
                membership.joined_at = timezone.now()
                membership.left_at = None
                membership.save(update_fields=['is_active', 'joined_at', 'left_at', 'updated_at'])

            role, _ = Role.objects.get_or_create(
                tenant=tenant,
                name=OWNER_ROLE_NAME,
                defaults={'description': 'Unconditional access to everything'},
            )
            store.assign_to_role(role.id, [BUSINESS_OWNER])
            _, assigned = UserRole.objects.get_or_create(user=user, role=role, defaults={'tenant': tenant})
            return assigned

        try:
            assigned = UnitOfWork().with_transaction(apply)
        except AuthzError as e:
            raise CommandError(e.message)

        if assigned:
            self.stdout.write(self.style.SUCCESS(
                f'{user.email} is now a business owner (role "{OWNER_ROLE_NAME}" in {tenant.slug})'
            ))
        else:
            self.stdout.write(f'{user.email} already holds the "{OWNER_ROLE_NAME}" role in {tenant.slug}')

    def _find_tenant(self, identifier):
        tenant = Tenant.objects.by_slug(identifier)
        if tenant is None:
            try:
                tenant = Tenant.objects.filter(id=uuid.UUID(identifier)).first()
            except ValueError:
                tenant = None
        if tenant is None:
            raise CommandError(f'Tenant not found: {identifier}')
        return tenant
