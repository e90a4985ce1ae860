"""
RBAC (Role-Based Access Control) Extension.

Roles carry prioritized grants; an Ability compiles them for one actor
and answers permission checks. To use it:

1. Enable RBAC in config:
   AUTH_POLICY_ENGINE=rbac

2. Import this module in your app startup:
   from rolegate.extensions.auth import rbac  # Registers the engine

3. Register the resource types your permissions name:
   resources.register_actor(User)
   resources.register(Order)

4. Create roles and grant permissions:
   roles = RoleService(db)
   await roles.seed_default_roles()
   editor = await roles.create("Editor", priority=10)
   await roles.grant(editor, await PermissionCatalog(db).get_or_create("update", "Post"))
   await MembershipService(db).assign(user, editor)

Models:
- Permission: (action, resource_type) catalog entry
- Role: Named, prioritized group of grants
- RoleAbility: Grant of a permission to a role, with ownership settings
- UserRole: Links actors to roles
"""

from .models import Permission, Role, RoleAbility, UserRole
from .exceptions import (
    RBACError,
    DuplicatePermissionError,
    DuplicateRoleError,
    DuplicateGrantError,
    RoleInUseError,
    UnknownRoleError,
    GuestActorError,
)
from .service import (
    DEFAULT_ROLES,
    PermissionCatalog,
    RoleService,
    MembershipService,
    assign_default_role,
    install_default_role_policy,
)
from .ownership import Diagnostic, DiagnosticLog
from .engine import (
    ACTION_ALIASES,
    Ability,
    AbilityNotReadyError,
    AbilityState,
    RBACPolicyEngine,
    Rule,
    expand_action,
)

__all__ = [
    "Permission",
    "Role",
    "RoleAbility",
    "UserRole",
    "RBACError",
    "DuplicatePermissionError",
    "DuplicateRoleError",
    "DuplicateGrantError",
    "RoleInUseError",
    "UnknownRoleError",
    "GuestActorError",
    "DEFAULT_ROLES",
    "PermissionCatalog",
    "RoleService",
    "MembershipService",
    "assign_default_role",
    "install_default_role_policy",
    "Diagnostic",
    "DiagnosticLog",
    "ACTION_ALIASES",
    "Ability",
    "AbilityNotReadyError",
    "AbilityState",
    "RBACPolicyEngine",
    "Rule",
    "expand_action",
]
