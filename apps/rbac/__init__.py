"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control with:
- Global user identity and per-tenant memberships
- Roles, role templates and the permission catalog
- Direct per-tenant permission grants
- Permission resolution with owner / system-admin / cross-tenant bypasses
"""
