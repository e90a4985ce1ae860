"""
RBAC Models - Permissions, Roles, Grants and Memberships.

- Permission: a catalog entry, one (action, resource_type) pair
- Role: named, prioritized group of grants (lower priority = more authority)
- RoleAbility: a grant binding a role to a permission, with ownership config
- UserRole: an actor's membership in a role

Usage:
    perm = Permission(action="update", resource_type="Order")
    manager = Role(name="Manager", priority=1)
    grant = RoleAbility(
        role=manager,
        permission=perm,
        owned=True,
        context="owned",
        ownership_source="StoreManager",
        ownership_conditions={"foreign_key": "store_id", "user_key": "user_id"},
    )
    membership = UserRole(user_id=user.id, role=manager)
"""

from typing import Any
from uuid import UUID
from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rolegate.models.base import Base, StandardMixin
from rolegate.schemas.rbac import GrantContext, OwnershipConditions


class Permission(Base, StandardMixin):
    """
    Permission catalog entry.

    Examples:
        Permission(action="read", resource_type="Post")
        Permission(action="manage", resource_type="Role")
    """

    __tablename__ = "rbac_permissions"
    __table_args__ = (
        UniqueConstraint("action", "resource_type", name="uq_permission_action_resource"),
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    grants: Mapped[list["RoleAbility"]] = relationship(
        "RoleAbility",
        back_populates="permission",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def permission_string(self) -> str:
        """Get permission as 'ResourceType:action' string."""
        return f"{self.resource_type}:{self.action}"

    @property
    def display_name(self) -> str:
        return f"{self.action.replace('_', ' ').capitalize()} {self.resource_type}"

    def __repr__(self) -> str:
        return f"<Permission {self.action} {self.resource_type}>"


class Role(Base, StandardMixin):
    """
    Role definition.

    Roles are evaluated in ascending priority order: priority 1 is checked
    before priority 50, and its grants win when both cover the same ability.
    """

    __tablename__ = "rbac_roles"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=50, nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    grants: Mapped[list["RoleAbility"]] = relationship(
        "RoleAbility",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    memberships: Mapped[list["UserRole"]] = relationship(
        "UserRole",
        back_populates="role",
        lazy="selectin",
    )

    @property
    def slug(self) -> str:
        """'Role Manager' -> 'role_manager'."""
        return "_".join(self.name.lower().split())

    @staticmethod
    def normalize_name(name: str) -> str:
        """Title-case each word: 'super admin' -> 'Super Admin'."""
        return " ".join(word.capitalize() for word in name.replace("_", " ").split())

    def __repr__(self) -> str:
        return f"<Role {self.name} priority={self.priority}>"


class RoleAbility(Base, StandardMixin):
    """
    Grant of a permission to a role.

    The same permission may be granted to a role more than once only if
    the ownership facets (owned, context, ownership_source) differ.
    """

    __tablename__ = "rbac_role_abilities"
    __table_args__ = (
        UniqueConstraint(
            "role_id",
            "permission_id",
            "owned",
            "context",
            "ownership_source",
            name="uq_role_ability_scope",
        ),
    )

    role_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    context: Mapped[str | None] = mapped_column(String(20), nullable=True, default="global")

    # Join-model ownership: the secondary type and its field mapping
    ownership_source: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    ownership_conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    role: Mapped["Role"] = relationship("Role", back_populates="grants", lazy="selectin")
    permission: Mapped["Permission"] = relationship(
        "Permission",
        back_populates="grants",
        lazy="selectin",
    )

    @property
    def is_ownership_scoped(self) -> bool:
        return self.owned or self.context == GrantContext.OWNED.value

    @property
    def is_context_scoped(self) -> bool:
        return self.context == GrantContext.SCOPED.value

    @property
    def access_type(self) -> str:
        if self.is_context_scoped:
            return "scoped"
        if self.is_ownership_scoped:
            return "owned"
        return "global"

    @property
    def conditions(self) -> OwnershipConditions:
        return OwnershipConditions.from_stored(self.ownership_conditions)

    def __repr__(self) -> str:
        return f"<RoleAbility role={self.role_id} permission={self.permission_id} {self.access_type}>"


class UserRole(Base, StandardMixin):
    """
    Actor role membership. Each membership can be deactivated on its own.
    """

    __tablename__ = "rbac_user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    role: Mapped["Role"] = relationship("Role", back_populates="memberships", lazy="selectin")

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id} role={self.role_id}>"
