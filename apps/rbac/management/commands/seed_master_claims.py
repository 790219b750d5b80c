"""
Management command to synchronize the permission catalog.

Creates missing master claims and updates changed metadata from the default
catalog. Idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand

from apps.rbac.catalog import ClaimCatalog


class Command(BaseCommand):
    help = 'Synchronize the permission catalog with the built-in defaults (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--prune',
            action='store_true',
            help='Delete catalog entries that are not in the defaults, with all their grants',
        )

    def handle(self, *args, **options):
        result = ClaimCatalog().sync(prune=options['prune'])

        for value in result.created:
            self.stdout.write(f'  + {value}')
        for value in result.updated:
            self.stdout.write(f'  ~ {value}')
        for value in result.removed:
            self.stdout.write(self.style.WARNING(f'  - {value}'))

        self.stdout.write(self.style.SUCCESS(
            f'Catalog synchronized: {len(result.created)} created, '
            f'{len(result.updated)} updated, {len(result.removed)} removed'
        ))
