"""
Authorization interfaces - Core abstractions.

These define the contracts that authorization implementations and
application resource types follow. Application code depends ONLY on these
interfaces, never on implementations.

Resource capabilities:
- Ownable: instance-level owned_by(actor)
- UserScoped: class-level scoped_for_user(actor) -> Select
- ContextScoped: class-level in_current_scope(instance, actor, context)

A resource type opts into a capability by inheriting the mixin; the
resolution engine detects it with issubclass() and never probes attributes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import Select


# Ambient values for the current authorization context, e.g. {"store_id": "5"}
RequestContext = Mapping[str, Any]


# ============================================================
# POLICY DECISION
# ============================================================

@dataclass
class PolicyDecision:
    """
    Result of a policy evaluation.

    Attributes:
        allowed: Whether the action is permitted
        reason: Human-readable explanation (for errors/logging)
        metadata: Additional data (matched rule, resource type, etc.)
    """
    allowed: bool
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, reason: str | None = None, **metadata: Any) -> "PolicyDecision":
        return cls(allowed=True, reason=reason, metadata=metadata)

    @classmethod
    def deny(cls, reason: str = "Permission denied", **metadata: Any) -> "PolicyDecision":
        return cls(allowed=False, reason=reason, metadata=metadata)


# ============================================================
# DATA SCOPE
# ============================================================

@dataclass
class DataScope:
    """
    Represents boundaries of what data an actor can access.

    Levels:
        global     no restrictions
        ownership  column equality, e.g. {"user_id": actor_id}
        ids        column membership, e.g. {"store_id": {5, 6}}
        predicate  only checkable per instance (not expressible as SQL)
        none       nothing is accessible

    Examples:
        DataScope.global_access()
        DataScope.ownership(actor.id, field_name="creator_id")
        DataScope.ids({10, 20}, field_name="id")
    """
    level: str
    filters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def global_access(cls) -> "DataScope":
        """No data restrictions."""
        return cls(level="global", filters={})

    @classmethod
    def ownership(cls, owner_id: Any, field_name: str = "user_id") -> "DataScope":
        """Restrict to owned records."""
        return cls(level="ownership", filters={field_name: owner_id})

    @classmethod
    def ids(cls, values: set[Any] | frozenset[Any], field_name: str = "id") -> "DataScope":
        """Restrict to records whose field is in a set of values."""
        return cls(level="ids", filters={field_name: frozenset(values)})

    @classmethod
    def predicate(cls) -> "DataScope":
        """Access depends on a per-instance check."""
        return cls(level="predicate", filters={})

    @classmethod
    def none(cls) -> "DataScope":
        """No access at all."""
        return cls(level="none", filters={})

    @property
    def is_global(self) -> bool:
        return self.level == "global"

    @property
    def is_empty(self) -> bool:
        return self.level == "none"


# ============================================================
# POLICY ENGINE
# ============================================================

class PolicyEngine(ABC):
    """
    Abstract policy engine interface.

    Evaluates whether an actor can perform an action on a resource.

    Implementations:
    - RBACPolicyEngine: role grants compiled into an Ability
    """

    @abstractmethod
    async def evaluate(
        self,
        actor: Any,
        action: str,
        resource: Any | None = None,
        context: dict[str, Any] | None = None,
    ) -> PolicyDecision:
        """
        Evaluate if actor can perform action on resource.

        Args:
            actor: The user performing the action (None for guests)
            action: Action identifier ("update" or "Order:update")
            resource: Optional resource instance or type
            context: Ambient request context for scoped rules

        Returns:
            PolicyDecision with allowed status and reason
        """
        pass

    @abstractmethod
    async def get_permissions(
        self,
        actor: Any,
        resource: Any | None = None,
    ) -> set[str]:
        """
        Get all permissions actor has (optionally for a specific resource).

        Returns:
            Set of "ResourceType:operation" strings
        """
        pass

    async def has_permission(
        self,
        actor: Any,
        permission: str,
        resource: Any | None = None,
    ) -> bool:
        """Check if actor has a specific permission."""
        permissions = await self.get_permissions(actor, resource)
        return permission in permissions


# ============================================================
# RESOURCE CAPABILITIES
# ============================================================

class Ownable:
    """
    Resource type that decides ownership per instance.

    Usage:
        class Document(Base, Ownable):
            def owned_by(self, actor) -> bool:
                return actor.id in {self.author_id, self.reviewer_id}
    """

    def owned_by(self, actor: Any) -> bool:
        raise NotImplementedError


class UserScoped:
    """
    Resource type that can select the rows an actor owns.

    Usage:
        class Project(Base, UserScoped):
            @classmethod
            def scoped_for_user(cls, actor) -> Select:
                return select(cls).join(Membership).where(Membership.user_id == actor.id)
    """

    @classmethod
    def scoped_for_user(cls, actor: Any) -> Select:
        raise NotImplementedError


class ContextScoped:
    """
    Resource type whose access depends on the ambient request context.

    Usage:
        class Ticket(Base, ContextScoped):
            @classmethod
            def in_current_scope(cls, instance, actor, context) -> bool:
                return str(instance.store_id) == str(context.get("store_id"))
    """

    @classmethod
    def in_current_scope(cls, instance: Any, actor: Any, context: RequestContext) -> bool:
        raise NotImplementedError
