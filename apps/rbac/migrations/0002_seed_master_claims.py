# Data migration: seed the default permission catalog

from django.db import migrations


def seed_master_claims(apps, schema_editor):
    from apps.rbac.catalog import DEFAULT_MASTER_CLAIMS

    MasterClaim = apps.get_model('rbac', 'MasterClaim')
    for definition in DEFAULT_MASTER_CLAIMS:
        MasterClaim.objects.update_or_create(
            claim_value=definition.claim_value,
            defaults={
                'display_name': definition.display_name,
                'category': definition.category,
                'description': definition.description,
                'is_tenant_scoped': definition.is_tenant_scoped,
                'is_system_permission': definition.is_system_permission,
            },
        )


def unseed_master_claims(apps, schema_editor):
    from apps.rbac.catalog import DEFAULT_MASTER_CLAIMS

    MasterClaim = apps.get_model('rbac', 'MasterClaim')
    MasterClaim.objects.filter(
        claim_value__in=[definition.claim_value for definition in DEFAULT_MASTER_CLAIMS]
    ).delete()


class Migration(migrations.Migration):

    dependencies = [
        ('rbac', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(seed_master_claims, unseed_master_claims),
    ]
