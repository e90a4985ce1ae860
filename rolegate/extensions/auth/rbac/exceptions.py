"""
RBAC administration errors.

Raised synchronously to admin tooling; the resolution engine itself never
raises these.
"""


class RBACError(ValueError):
    """Base class for role/permission administration errors."""


class DuplicatePermissionError(RBACError):
    def __init__(self, action: str, resource_type: str):
        self.action = action
        self.resource_type = resource_type
        super().__init__(f"Permission '{action} {resource_type}' already exists")


class DuplicateRoleError(RBACError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Role name '{name}' has already been taken")


class DuplicateGrantError(RBACError):
    def __init__(self, role_name: str, permission: str):
        self.role_name = role_name
        self.permission = permission
        super().__init__(
            f"'{permission}' already exists for role '{role_name}' "
            "with this ownership scope and context"
        )


class RoleInUseError(RBACError):
    def __init__(self, name: str, member_count: int):
        self.name = name
        self.member_count = member_count
        super().__init__(f"Role '{name}' still has {member_count} member(s)")


class UnknownRoleError(RBACError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Role '{name}' does not exist")


class GuestActorError(RBACError):
    def __init__(self):
        super().__init__("Roles can only be assigned to a persisted actor")
