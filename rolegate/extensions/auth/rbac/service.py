"""
RBAC Services - Manage the permission catalog, roles, grants and memberships.

Usage:
    catalog = PermissionCatalog(db)
    roles = RoleService(db)
    members = MembershipService(db)

    update_order = await catalog.create("update", "Order")
    manager = await roles.create("Manager", priority=1)
    await roles.grant(
        manager,
        update_order,
        GrantOptions(
            owned=True,
            ownership_source="StoreManager",
            ownership_conditions=OwnershipConditions(foreign_key="store_id"),
        ),
    )
    await members.assign(user, manager)
"""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rolegate.core.config import settings
from rolegate.core.hooks import HookManager, hooks as default_hooks
from rolegate.repositories.base import BaseRepository
from rolegate.schemas.rbac import GrantContext, GrantOptions

from .exceptions import (
    DuplicateGrantError,
    DuplicatePermissionError,
    DuplicateRoleError,
    GuestActorError,
    RoleInUseError,
    UnknownRoleError,
)
from .models import Permission, Role, RoleAbility, UserRole

logger = structlog.get_logger()


# Original default role set: (name, description, priority)
DEFAULT_ROLES: list[tuple[str, str, int]] = [
    ("Guest", "Unauthenticated users", 100),
    ("Basic User", "Standard authenticated users", 50),
    ("Role Manager", "Can manage roles and permissions", 25),
    ("Administrator", "Full system access", 1),
]


def is_persisted(actor: Any) -> bool:
    """Guests are None or unsaved actors without an id."""
    return actor is not None and getattr(actor, "id", None) is not None


class PermissionRepository(BaseRepository[Permission]):
    model = Permission

    def _base_query(self):
        return select(Permission).order_by(Permission.resource_type, Permission.action)


class RoleRepository(BaseRepository[Role]):
    model = Role

    def _base_query(self):
        return select(Role).order_by(Role.priority, Role.name)

    async def get_by_name(self, name: str) -> Role | None:
        stmt = select(Role).where(func.lower(Role.name) == name.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()


class GrantRepository(BaseRepository[RoleAbility]):
    model = RoleAbility

    async def for_role(self, role_id: UUID, active_only: bool = True) -> list[RoleAbility]:
        """
        Grants of a role joined to their permissions.

        Order: unrestricted grants before ownership-scoped ones (owned
        flag or owned context), then by action and resource type, then id,
        so compilation is repeatable.
        """
        stmt = (
            select(RoleAbility)
            .join(Permission, RoleAbility.permission_id == Permission.id)
            .where(RoleAbility.role_id == role_id)
            .order_by(
                case(
                    (or_(RoleAbility.owned, RoleAbility.context == GrantContext.OWNED.value), 1),
                    else_=0,
                ),
                Permission.action,
                Permission.resource_type,
                RoleAbility.id,
            )
        )
        if active_only:
            stmt = stmt.where(Permission.active.is_(True))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


class MembershipRepository(BaseRepository[UserRole]):
    model = UserRole

    async def active_roles(self, user_id: Any) -> list[Role]:
        """Active roles through active memberships, highest authority first."""
        stmt = (
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(
                UserRole.user_id == user_id,
                UserRole.active.is_(True),
                Role.active.is_(True),
            )
            .order_by(Role.priority, Role.name, Role.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


# ============================================================
# PERMISSION CATALOG
# ============================================================

class PermissionCatalog:
    """Declared (action, resource_type) pairs."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.permissions = PermissionRepository(db)

    async def create(
        self,
        action: str,
        resource_type: str,
        description: str | None = None,
    ) -> Permission:
        """
        Declare a permission.

        Raises:
            DuplicatePermissionError: (action, resource_type) already declared
        """
        if await self.find(action, resource_type):
            raise DuplicatePermissionError(action, resource_type)

        permission = await self.permissions.create(
            action=action,
            resource_type=resource_type,
            description=description,
            active=True,
        )
        logger.info(
            "rbac.permission_created",
            action=action,
            resource_type=resource_type,
        )
        return permission

    async def find(self, action: str, resource_type: str) -> Permission | None:
        return await self.permissions.get_one(action=action, resource_type=resource_type)

    async def get_or_create(
        self,
        action: str,
        resource_type: str,
        description: str | None = None,
    ) -> Permission:
        permission = await self.find(action, resource_type)
        if permission:
            return permission
        return await self.create(action, resource_type, description)

    async def list_permissions(self, resource_type: str | None = None) -> list[Permission]:
        return await self.permissions.all(resource_type=resource_type)

    async def deactivate(self, permission_id: UUID) -> Permission | None:
        return await self.permissions.update(permission_id, active=False)

    async def activate(self, permission_id: UUID) -> Permission | None:
        return await self.permissions.update(permission_id, active=True)

    async def delete(self, permission_id: UUID) -> bool:
        """Delete a permission and every grant referencing it."""
        return await self.permissions.delete(permission_id)


# ============================================================
# ROLES AND GRANTS
# ============================================================

class RoleService:
    """Role lifecycle and role-to-permission grants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.roles = RoleRepository(db)
        self.grants = GrantRepository(db)
        self.memberships = MembershipRepository(db)

    async def create(
        self,
        name: str,
        priority: int = 50,
        description: str | None = None,
        active: bool = True,
    ) -> Role:
        """
        Create a role.

        Raises:
            DuplicateRoleError: name taken (case-insensitive)
            ValueError: priority is not a positive integer
        """
        if not name or not name.strip():
            raise ValueError("Role name can't be blank")
        if priority < 1:
            raise ValueError("Role priority must be greater than 0")

        normalized = Role.normalize_name(name)
        if await self.roles.get_by_name(normalized):
            raise DuplicateRoleError(normalized)

        role = await self.roles.create(
            name=normalized,
            priority=priority,
            description=description,
            active=active,
        )
        logger.info("rbac.role_created", role=role.name, priority=priority)
        return role

    async def get_by_name(self, name: str) -> Role | None:
        return await self.roles.get_by_name(name)

    async def list_roles(self) -> list[Role]:
        return await self.roles.all()

    async def update(
        self,
        role: Role,
        name: str | None = None,
        priority: int | None = None,
        description: str | None = None,
        active: bool | None = None,
    ) -> Role:
        """Update role properties, keeping name uniqueness."""
        if name is not None:
            normalized = Role.normalize_name(name)
            existing = await self.roles.get_by_name(normalized)
            if existing and existing.id != role.id:
                raise DuplicateRoleError(normalized)
            role.name = normalized
        if priority is not None:
            if priority < 1:
                raise ValueError("Role priority must be greater than 0")
            role.priority = priority
        if description is not None:
            role.description = description
        if active is not None:
            role.active = active

        await self.db.flush()
        return role

    async def delete(self, role: Role) -> None:
        """
        Delete a role and its grants.

        Raises:
            RoleInUseError: the role still has members
        """
        member_count = await self.memberships.count(role_id=role.id)
        if member_count:
            raise RoleInUseError(role.name, member_count)

        await self.db.delete(role)
        await self.db.flush()
        logger.info("rbac.role_deleted", role=role.name)

    async def seed_default_roles(self) -> list[Role]:
        """Create the conventional role set (existing names are kept)."""
        seeded = []
        for name, description, priority in DEFAULT_ROLES:
            role = await self.roles.get_by_name(name)
            if role is None:
                role = await self.create(name, priority=priority, description=description)
            seeded.append(role)
        return seeded

    # ------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------

    async def grant(
        self,
        role: Role,
        permission: Permission,
        options: GrantOptions | None = None,
    ) -> RoleAbility:
        """
        Grant a permission to a role.

        Raises:
            DuplicateGrantError: same permission already granted with the
                same owned/context/ownership_source facets
        """
        options = options or GrantOptions()
        context = options.context.value if options.context else None

        stmt = select(func.count()).select_from(RoleAbility).where(
            RoleAbility.role_id == role.id,
            RoleAbility.permission_id == permission.id,
            RoleAbility.owned.is_(options.owned),
            RoleAbility.context.is_(None) if context is None else RoleAbility.context == context,
            RoleAbility.ownership_source.is_(None)
            if options.ownership_source is None
            else RoleAbility.ownership_source == options.ownership_source,
        )
        if await self.db.scalar(stmt):
            raise DuplicateGrantError(role.name, f"{permission.action} {permission.resource_type}")

        grant = RoleAbility(
            role=role,
            permission=permission,
            owned=options.owned,
            context=context,
            ownership_source=options.ownership_source,
            ownership_conditions=options.stored_conditions(),
        )
        self.db.add(grant)
        await self.db.flush()

        logger.info(
            "rbac.permission_granted",
            role=role.name,
            action=permission.action,
            resource_type=permission.resource_type,
            access_type=grant.access_type,
        )
        return grant

    async def revoke(self, role: Role, permission: Permission) -> int:
        """Remove every grant of a permission from a role."""
        grants = await self.grants.all(role_id=role.id, permission_id=permission.id)
        for grant in grants:
            await self.db.delete(grant)
        await self.db.flush()
        await self.db.refresh(role, attribute_names=["grants"])
        return len(grants)

    async def has_grant(self, role: Role, permission: Permission) -> bool:
        return await self.grants.exists(role_id=role.id, permission_id=permission.id)

    async def ownership_scope_for(self, role: Role, resource_type: str) -> str | None:
        """
        Admin summary of a role's access to a resource type.

        Returns "all" when any grant is unrestricted, "owned" when only
        ownership-restricted grants exist, None without grants.
        """
        stmt = (
            select(RoleAbility.owned)
            .join(Permission, RoleAbility.permission_id == Permission.id)
            .where(
                RoleAbility.role_id == role.id,
                Permission.resource_type == resource_type,
            )
        )
        owned_flags = set((await self.db.execute(stmt)).scalars().all())
        if False in owned_flags:
            return "all"
        if True in owned_flags:
            return "owned"
        return None

    async def permission_names(self, role: Role) -> list[str]:
        """'read Post' style names of the role's granted permissions."""
        stmt = (
            select(Permission.action, Permission.resource_type)
            .join(RoleAbility, RoleAbility.permission_id == Permission.id)
            .where(RoleAbility.role_id == role.id)
            .distinct()
            .order_by(Permission.resource_type, Permission.action)
        )
        rows = (await self.db.execute(stmt)).all()
        return [f"{action} {resource_type}" for action, resource_type in rows]


# ============================================================
# MEMBERSHIPS
# ============================================================

class MembershipService:
    """Actor role assignments."""

    def __init__(self, db: AsyncSession, hooks: HookManager | None = None):
        self.db = db
        self.hooks = hooks or default_hooks
        self.roles = RoleRepository(db)
        self.memberships = MembershipRepository(db)

    async def _resolve_role(self, role: Role | str) -> Role:
        if isinstance(role, Role):
            return role
        found = await self.roles.get_by_name(role)
        if found is None:
            raise UnknownRoleError(role)
        return found

    async def register_actor(self, actor: Any) -> None:
        """Announce a new actor (runs the default-role policy)."""
        await self.hooks.trigger("actor.created", actor=actor, db=self.db)

    async def assign(self, actor: Any, role: Role | str) -> UserRole:
        """Assign a role (idempotent; re-activates a disabled membership)."""
        if not is_persisted(actor):
            raise GuestActorError()
        role = await self._resolve_role(role)
        membership = await self.memberships.get_one(user_id=actor.id, role_id=role.id)

        if membership is None:
            membership = await self.memberships.create(user_id=actor.id, role_id=role.id, active=True)
        elif not membership.active:
            membership.active = True
            await self.db.flush()

        await self.hooks.trigger("role.assigned", actor=actor, role=role, db=self.db)
        logger.info("rbac.role_assigned", actor_id=str(actor.id), role=role.name)
        return membership

    async def revoke(self, actor: Any, role: Role | str) -> int:
        """Remove a role from an actor. Returns the number of memberships removed."""
        role = await self._resolve_role(role)
        removed = await self.memberships.delete_many(user_id=actor.id, role_id=role.id)
        await self.db.flush()

        if removed:
            await self.hooks.trigger("role.revoked", actor=actor, role=role, db=self.db)
            logger.info("rbac.role_revoked", actor_id=str(actor.id), role=role.name)
        return removed

    async def set_active(self, actor: Any, role: Role | str, active: bool) -> UserRole | None:
        role = await self._resolve_role(role)
        membership = await self.memberships.get_one(user_id=actor.id, role_id=role.id)
        if membership is None:
            return None
        membership.active = active
        await self.db.flush()
        return membership

    async def active_roles_for(self, actor: Any) -> list[Role]:
        """Active roles, highest authority (lowest priority number) first."""
        if not is_persisted(actor):
            return []
        return await self.memberships.active_roles(actor.id)

    async def role_names(self, actor: Any) -> list[str]:
        return [role.name for role in await self.active_roles_for(actor)]

    async def has_role(self, actor: Any, name: str) -> bool:
        wanted = name.strip().lower()
        return any(role.name.lower() == wanted for role in await self.active_roles_for(actor))

    async def has_any_role(self, actor: Any, *names: str) -> bool:
        held = {name.lower() for name in await self.role_names(actor)}
        return any(name.strip().lower() in held for name in names)

    async def has_all_roles(self, actor: Any, *names: str) -> bool:
        held = {name.lower() for name in await self.role_names(actor)}
        return all(name.strip().lower() in held for name in names)

    async def highest_priority_role(self, actor: Any) -> Role | None:
        roles = await self.active_roles_for(actor)
        return roles[0] if roles else None


# ============================================================
# DEFAULT ROLE POLICY
# ============================================================

async def assign_default_role(actor: Any, db: AsyncSession, **kwargs: Any) -> UserRole | None:
    """
    actor.created handler: give role-less actors the configured default role.
    """
    if not settings.auth.assign_default_role or not is_persisted(actor):
        return None

    members = MembershipService(db)
    if await members.memberships.exists(user_id=actor.id):
        return None

    role = await members.roles.get_by_name(settings.auth.default_role_name)
    if role is None:
        logger.warning(
            "rbac.default_role_missing",
            role=settings.auth.default_role_name,
        )
        return None
    return await members.assign(actor, role)


def install_default_role_policy(manager: HookManager | None = None) -> None:
    """Register the default-role handler once."""
    manager = manager or default_hooks
    if not manager.has_handler("actor.created", assign_default_role):
        manager.register("actor.created", assign_default_role, source="rbac.default_role")
