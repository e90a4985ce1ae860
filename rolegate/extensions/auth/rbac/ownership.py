"""
Ownership resolution for owned and scoped grants.

A grant restricted to "owned" records is turned into a Matcher by trying
these strategies in order, first match wins:

1. join model      grant.ownership_source + ownership_conditions
2. Ownable         resource.owned_by(actor)
3. UserScoped      Resource.scoped_for_user(actor) -> id set
4. self            the resource type is the actor type -> id == actor.id
5. user_id         column equality
6. creator_id      column equality
7. last resort     per-instance creator_id / user_id attribute check

Anything that cannot be resolved becomes DenyAll; nothing here ever widens
access because of a misconfiguration.

Every Matcher answers two questions: does a given instance match, and what
DataScope describes the matching rows for query scoping.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rolegate.core.auth.interfaces import DataScope, RequestContext
from rolegate.core.auth.registry import ResourceRegistry, ResourceType

from .models import RoleAbility

logger = structlog.get_logger()

_MISSING = object()


# ============================================================
# DIAGNOSTICS
# ============================================================

@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal compilation or evaluation problem, kept for operators."""
    event: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


class DiagnosticLog:
    """Collects diagnostics and mirrors each one to the structured log."""

    def __init__(self) -> None:
        self.entries: list[Diagnostic] = []

    def record(self, event: str, message: str, **details: Any) -> Diagnostic:
        diagnostic = Diagnostic(event=event, message=message, details=details)
        self.entries.append(diagnostic)
        logger.warning(event, message=message, **details)
        return diagnostic

    def events(self) -> list[str]:
        return [entry.event for entry in self.entries]


# ============================================================
# MATCHERS
# ============================================================

class Matcher:
    """How a rule decides access to one resource type."""

    strategy: str = "matcher"

    def allows_class(self) -> bool:
        """Collection-level check (no instance)."""
        return True

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        raise NotImplementedError

    def scope(self) -> DataScope:
        return DataScope.predicate()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.strategy}>"


class AllowAll(Matcher):
    strategy = "global"

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        return True

    def scope(self) -> DataScope:
        return DataScope.global_access()


class DenyAll(Matcher):
    strategy = "deny"

    def __init__(self, reason: str):
        self.reason = reason

    def allows_class(self) -> bool:
        return False

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        return False

    def scope(self) -> DataScope:
        return DataScope.none()

    def __repr__(self) -> str:
        return f"<DenyAll {self.reason}>"


class FieldEquals(Matcher):
    """instance.<field> == value"""

    def __init__(self, field_name: str, value: Any, strategy: str):
        self.field_name = field_name
        self.value = value
        self.strategy = strategy

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        return getattr(instance, self.field_name, _MISSING) == self.value

    def scope(self) -> DataScope:
        return DataScope.ownership(self.value, field_name=self.field_name)


class FieldIn(Matcher):
    """instance.<field> in a precomputed id set"""

    def __init__(self, field_name: str, values: frozenset[Any], strategy: str):
        self.field_name = field_name
        self.values = values
        self.strategy = strategy

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        return getattr(instance, self.field_name, _MISSING) in self.values

    def scope(self) -> DataScope:
        return DataScope.ids(self.values, field_name=self.field_name)


class InstancePredicate(Matcher):
    """
    Per-instance callable; not expressible as a query filter.

    The callable runs host code (owned_by, in_current_scope). If it raises,
    the instance is denied and the failure is recorded on the log.
    """

    def __init__(
        self,
        predicate: Callable[[Any, Any, RequestContext], bool],
        strategy: str,
        log: DiagnosticLog | None = None,
    ):
        self.predicate = predicate
        self.strategy = strategy
        self.log = log

    def matches(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        try:
            return bool(self.predicate(instance, actor, context))
        except Exception as e:
            if self.log is not None:
                self.log.record(
                    "rbac.capability_failed",
                    f"{self.strategy} check raised {type(e).__name__}; instance denied",
                    strategy=self.strategy,
                    resource_type=type(instance).__name__,
                    error=str(e),
                )
            return False


def _owned_by(instance: Any, actor: Any, context: RequestContext) -> bool:
    return instance.owned_by(actor)


def _fallback_owner_check(actor_id: Any) -> Callable[[Any, Any, RequestContext], bool]:
    def check(instance: Any, actor: Any, context: RequestContext) -> bool:
        for field_name in ("creator_id", "user_id"):
            value = getattr(instance, field_name, _MISSING)
            if value is not _MISSING:
                return value == actor_id
        return False
    return check


def context_matcher(resource_type: ResourceType, log: DiagnosticLog, **details: Any) -> Matcher:
    """Matcher for grants whose access depends on the request context."""
    if not resource_type.context_scoped:
        log.record(
            "rbac.scope_capability_missing",
            f"{resource_type.name} does not implement in_current_scope; scoped grant denies",
            resource_type=resource_type.name,
            **details,
        )
        return DenyAll("scope capability missing")

    model = resource_type.model
    return InstancePredicate(
        lambda instance, actor, context: model.in_current_scope(instance, actor, context),
        strategy="context",
        log=log,
    )


# ============================================================
# OWNERSHIP RESOLUTION
# ============================================================

class OwnershipResolver:
    """
    Resolves ownership-restricted grants for one actor.

    Join-model and UserScoped lookups run queries, so resolution happens
    during compilation; the resulting matchers are pure in-memory checks.
    """

    def __init__(
        self,
        db: AsyncSession,
        actor: Any,
        registry: ResourceRegistry,
        log: DiagnosticLog,
        default_user_key: str = "user_id",
    ):
        self.db = db
        self.actor = actor
        self.registry = registry
        self.log = log
        self.default_user_key = default_user_key

    @property
    def actor_id(self) -> Any:
        return getattr(self.actor, "id", None) if self.actor is not None else None

    async def resolve(self, grant: RoleAbility, resource_type: ResourceType) -> Matcher:
        details = {
            "role": grant.role.name if grant.role else None,
            "action": grant.permission.action,
            "resource_type": resource_type.name,
        }

        # Guests own nothing
        if self.actor_id is None:
            return DenyAll("actor has no identity")

        if grant.ownership_source:
            return await self._join_model(grant, resource_type, details)

        if resource_type.ownable:
            return InstancePredicate(_owned_by, strategy="owned_by", log=self.log)

        if resource_type.user_scoped:
            return await self._user_scoped(resource_type, details)

        if self.registry.is_actor_type(resource_type):
            return FieldEquals("id", self.actor_id, strategy="self")

        if resource_type.has_field("user_id"):
            return FieldEquals("user_id", self.actor_id, strategy="user_id")

        if resource_type.has_field("creator_id"):
            return FieldEquals("creator_id", self.actor_id, strategy="creator_id")

        return InstancePredicate(
            _fallback_owner_check(self.actor_id), strategy="instance_owner", log=self.log
        )

    async def _join_model(
        self,
        grant: RoleAbility,
        resource_type: ResourceType,
        details: dict[str, Any],
    ) -> Matcher:
        source = self.registry.resolve(grant.ownership_source)
        if source is None or not source.is_mapped:
            self.log.record(
                "rbac.ownership_source_unresolved",
                f"Ownership source '{grant.ownership_source}' is not a registered model",
                ownership_source=grant.ownership_source,
                **details,
            )
            return DenyAll("ownership source unresolved")

        conditions = grant.conditions
        foreign_key = conditions.foreign_key
        user_key = conditions.user_key or self.default_user_key

        if not foreign_key:
            self.log.record(
                "rbac.ownership_misconfigured",
                "Join-model ownership requires ownership_conditions.foreign_key",
                ownership_source=source.name,
                **details,
            )
            return DenyAll("foreign key missing")

        missing = [key for key in (foreign_key, user_key) if not source.has_field(key)]
        if missing:
            self.log.record(
                "rbac.ownership_misconfigured",
                f"Ownership source {source.name} has no field(s) {', '.join(missing)}",
                ownership_source=source.name,
                **details,
            )
            return DenyAll("ownership source fields missing")

        stmt = select(source.column(foreign_key)).where(source.column(user_key) == self.actor_id)
        values = frozenset(
            value for value in (await self.db.execute(stmt)).scalars().all() if value is not None
        )
        if not values:
            return DenyAll("no ownership rows")

        # The join rows either carry a key the resource shares, or point at the resource itself
        if resource_type.has_field(foreign_key):
            return FieldIn(foreign_key, values, strategy="join_model")
        return FieldIn("id", values, strategy="join_model")

    async def _user_scoped(self, resource_type: ResourceType, details: dict[str, Any]) -> Matcher:
        try:
            rows = resource_type.model.scoped_for_user(self.actor).subquery()
        except Exception as e:
            self.log.record(
                "rbac.capability_failed",
                f"{resource_type.name}.scoped_for_user raised {type(e).__name__}; grant denies",
                error=str(e),
                **details,
            )
            return DenyAll("scoped_for_user failed")

        if "id" not in rows.c:
            self.log.record(
                "rbac.ownership_misconfigured",
                f"{resource_type.name}.scoped_for_user must select an 'id' column",
                **details,
            )
            return DenyAll("scoped_for_user without id")

        values = frozenset((await self.db.execute(select(rows.c.id))).scalars().all())
        if not values:
            return DenyAll("scoped_for_user returned nothing")
        return FieldIn("id", values, strategy="scoped_for_user")
