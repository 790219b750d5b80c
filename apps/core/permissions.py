"""
Permission enforcement for API handlers.

This module provides:
- Single / AnyOf: the two shapes a permission requirement can take
- enforce(): explicit check at the top of a handler, raises ForbiddenError
- requires(): method decorator that calls enforce() before the handler runs
- IsTenantAuthenticated: DRF permission class requiring a resolved AuthContext
  and keeping object access inside the caller's tenant
"""
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Iterable, Optional, Tuple, Union

from rest_framework.permissions import BasePermission

from apps.core.context import AuthContext
from apps.core.exceptions import AuthenticationError, ForbiddenError
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Single:
    permission: str

    @property
    def permissions(self) -> Tuple[str, ...]:
        return (self.permission,)


@dataclass(frozen=True)
class AnyOf:
    permissions: Tuple[str, ...]

    def __init__(self, *permissions):
        object.__setattr__(self, 'permissions', tuple(permissions))


PermissionRequirement = Union[Single, AnyOf]


def is_satisfied(context: AuthContext, requirement: PermissionRequirement) -> bool:
    from apps.rbac.catalog import hierarchy_allows

    held = context.granted_permissions
    if isinstance(requirement, Single):
        return hierarchy_allows(held, requirement.permission)
    return any(hierarchy_allows(held, permission) for permission in requirement.permissions)


def enforce(context: Optional[AuthContext], requirement: PermissionRequirement, path: str = None):
    """
    Raise ForbiddenError unless ``context`` satisfies ``requirement``.

    Usage:
        enforce(request.auth_context, Single('roles.view'))
        enforce(request.auth_context, AnyOf('users.view', 'users.manage.roles'))
    """
    if context is None:
        raise AuthenticationError('Authentication credentials were not provided')

    if is_satisfied(context, requirement):
        return

    SecurityLogger.log_permission_denied(
        context.user_id,
        context.tenant_id,
        required=requirement.permissions,
        missing=requirement.permissions,
        path=path,
    )
    if isinstance(requirement, Single):
        message = f"Missing required permission: {requirement.permission}"
    else:
        message = f"Missing any of the required permissions: {', '.join(requirement.permissions)}"
    raise ForbiddenError(message, {'required': list(requirement.permissions)})


def ensure_can_grant(context: Optional[AuthContext], permissions: Iterable[str], path: str = None):
    """
    Raise ForbiddenError unless ``context`` may grant or revoke every value
    in ``permissions``.

    Applies to role permission writes, direct grants, role assignment and
    role creation alike: nobody hands out a permission they do not hold,
    and bypass markers only come from an equal or higher marker.
    """
    from apps.rbac.catalog import can_grant

    if context is None:
        raise AuthenticationError('Authentication credentials were not provided')

    denied = sorted({
        permission for permission in permissions
        if not can_grant(context.granted_permissions, permission)
    })
    if not denied:
        return

    SecurityLogger.log_permission_denied(
        context.user_id,
        context.tenant_id,
        required=denied,
        missing=denied,
        path=path,
    )
    raise ForbiddenError(
        'You cannot grant or revoke permissions you do not hold',
        {'denied': denied}
    )


def requires(requirement: PermissionRequirement):
    """
    Decorate a view method so it runs only when the caller satisfies ``requirement``.

    Usage:
        class RoleListView(APIView):
            permission_classes = [IsTenantAuthenticated]

            @requires(Single('roles.view'))
            def get(self, request):
                ...
    """
    def decorator(method):
        @wraps(method)
        def wrapped(self, request, *args, **kwargs):
            enforce(getattr(request, 'auth', None), requirement, path=request.path)
            return method(self, request, *args, **kwargs)

        wrapped.permission_requirement = requirement
        return wrapped

    return decorator


class IsTenantAuthenticated(BasePermission):
    """
    Allow requests that carry a resolved AuthContext.

    has_object_permission raises ForbiddenError when the object belongs to
    another tenant, unless a bypass marker held by the caller covers the
    requirement of the handler being run.
    """

    def has_permission(self, request, view):
        return isinstance(getattr(request, 'auth', None), AuthContext)

    def has_object_permission(self, request, view, obj):
        from apps.tenants.guard import TenantIsolationGuard

        object_tenant_id = getattr(obj, 'tenant_id', None)
        if object_tenant_id is None:
            return True

        handler = getattr(view, request.method.lower(), None)
        TenantIsolationGuard.ensure_same_tenant(
            request.auth,
            object_tenant_id,
            resource=f"{obj.__class__.__name__}:{getattr(obj, 'id', None)}",
            requirement=getattr(handler, 'permission_requirement', None),
        )
        return True
