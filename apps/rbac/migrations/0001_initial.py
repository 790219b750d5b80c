# Generated migration for RBAC models

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import apps.rbac.models


def _base_fields():
    return [
        ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
        ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
        ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=_base_fields() + [
                ('email', models.EmailField(db_index=True, help_text='User email address (unique globally)', max_length=254, unique=True)),
                ('first_name', models.CharField(blank=True, help_text='User first name', max_length=100)),
                ('last_name', models.CharField(blank=True, help_text='User last name', max_length=100)),
                ('password_hash', models.CharField(db_column='password_hash', help_text='Hashed password', max_length=255)),
                ('security_stamp', models.CharField(default=apps.rbac.models.generate_security_stamp, help_text='Changes whenever credentials change', max_length=64)),
                ('is_email_confirmed', models.BooleanField(default=False, help_text='Whether email has been confirmed')),
                ('is_globally_locked', models.BooleanField(db_index=True, default=False, help_text='Whether the account is locked across all tenants')),
                ('global_lockout_end', models.DateTimeField(blank=True, help_text='When the current lockout expires', null=True)),
                ('global_access_failed_count', models.PositiveIntegerField(default=0, help_text='Consecutive failed login attempts')),
                ('last_login_at', models.DateTimeField(blank=True, help_text='Last login timestamp', null=True)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='MasterClaim',
            fields=_base_fields() + [
                ('claim_type', models.CharField(default='permission', help_text="Claim type; always 'permission' today", max_length=50)),
                ('claim_value', models.CharField(db_index=True, help_text="Permission string (e.g., 'users.view', 'global.tenants.delete')", max_length=150, unique=True)),
                ('display_name', models.CharField(help_text='Human-readable label', max_length=255)),
                ('description', models.TextField(blank=True, help_text='What this permission grants', null=True)),
                ('category', models.CharField(db_index=True, help_text="Grouping (e.g., 'users', 'roles', 'system')", max_length=50)),
                ('is_tenant_scoped', models.BooleanField(default=True, help_text='Whether the permission applies inside a single tenant')),
                ('is_system_permission', models.BooleanField(default=False, help_text='Whether only system administrators may grant it')),
            ],
            options={
                'db_table': 'master_claims',
                'ordering': ['category', 'claim_value'],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=_base_fields() + [
                ('name', models.CharField(help_text='Role name, unique within the tenant', max_length=100)),
                ('description', models.TextField(blank=True, help_text='Role description', null=True)),
                ('tenant', models.ForeignKey(help_text='Tenant this role belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='roles', to='tenants.tenant')),
            ],
            options={
                'db_table': 'roles',
                'ordering': ['tenant', 'name'],
            },
        ),
        migrations.CreateModel(
            name='UserTenant',
            fields=_base_fields() + [
                ('is_active', models.BooleanField(db_index=True, default=False, help_text='Whether membership is currently active')),
                ('joined_at', models.DateTimeField(blank=True, help_text='When the membership became active', null=True)),
                ('left_at', models.DateTimeField(blank=True, help_text='When the member was removed', null=True)),
                ('invited_by', models.ForeignKey(blank=True, help_text='User who sent the invitation', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='invitations_sent', to=settings.AUTH_USER_MODEL)),
                ('tenant', models.ForeignKey(help_text='Tenant this membership belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='tenants.tenant')),
                ('user', models.ForeignKey(help_text='Member', on_delete=django.db.models.deletion.CASCADE, related_name='tenant_memberships', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_tenants',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='RoleClaim',
            fields=_base_fields() + [
                ('master_claim', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='role_claims', to='rbac.masterclaim')),
                ('role', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='role_claims', to='rbac.role')),
            ],
            options={
                'db_table': 'role_claims',
                'ordering': ['role', 'master_claim'],
            },
        ),
        migrations.CreateModel(
            name='UserClaim',
            fields=_base_fields() + [
                ('master_claim', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_claims', to='rbac.masterclaim')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_claims', to='tenants.tenant')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='direct_claims', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_claims',
                'ordering': ['user', 'tenant', 'master_claim'],
            },
        ),
        migrations.CreateModel(
            name='UserRole',
            fields=_base_fields() + [
                ('role', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_roles', to='rbac.role')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_roles', to='tenants.tenant')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='user_roles', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_roles',
                'ordering': ['user', 'role'],
            },
        ),
        migrations.AddConstraint(
            model_name='role',
            constraint=models.UniqueConstraint(fields=('tenant', 'name'), name='uniq_role_name_per_tenant'),
        ),
        migrations.AddConstraint(
            model_name='usertenant',
            constraint=models.UniqueConstraint(fields=('user', 'tenant'), name='uniq_user_tenant'),
        ),
        migrations.AddIndex(
            model_name='usertenant',
            index=models.Index(fields=['tenant', 'is_active'], name='user_tenant_tenant_active_idx'),
        ),
        migrations.AddIndex(
            model_name='usertenant',
            index=models.Index(fields=['user', 'is_active'], name='user_tenant_user_active_idx'),
        ),
        migrations.AddConstraint(
            model_name='roleclaim',
            constraint=models.UniqueConstraint(fields=('role', 'master_claim'), name='uniq_role_claim'),
        ),
        migrations.AddConstraint(
            model_name='userclaim',
            constraint=models.UniqueConstraint(fields=('user', 'tenant', 'master_claim'), name='uniq_user_claim'),
        ),
        migrations.AddIndex(
            model_name='userclaim',
            index=models.Index(fields=['user', 'tenant'], name='user_claim_user_tenant_idx'),
        ),
        migrations.AddConstraint(
            model_name='userrole',
            constraint=models.UniqueConstraint(fields=('user', 'role'), name='uniq_user_role'),
        ),
        migrations.AddIndex(
            model_name='userrole',
            index=models.Index(fields=['user', 'tenant'], name='user_role_user_tenant_idx'),
        ),
    ]
