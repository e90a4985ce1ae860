"""
Ability Resolution Engine.

An Ability is compiled once per authorization context (normally one
request) from the actor's roles and their grants, then answers point-in-time
checks and query-scoping questions.

Compilation:
1. Load the actor's active roles ordered by priority (lowest number first,
   name breaks ties). Guests get the configured guest role, if it exists.
2. For each role, load grants joined to active permissions.
3. Resolve each grant's resource type through the ResourceRegistry.
4. Skip grants whose (action, resource_type, family) key an earlier role
   already defined - the highest-authority role is authoritative.
5. Expand action aliases and install one rule per concrete operation.

Usage:
    ability = await Ability.build(db, current_user, {"store_id": "5"})

    ability.can("update", order)            # instance check
    ability.can("index", "Order")           # collection check
    query = ability.apply_to_query(select(Order), "index", Order)

    # Behind the PolicyEngine interface:
    AUTH_POLICY_ENGINE=rbac
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable

import structlog
from sqlalchemy import Select, and_, false, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rolegate.core.auth.interfaces import (
    DataScope,
    PolicyDecision,
    PolicyEngine,
    RequestContext,
)
from rolegate.core.auth.registry import (
    AuthRegistry,
    ResourceRegistry,
    ResourceType,
    resources as default_resources,
)
from rolegate.core.config import settings
from rolegate.core.logging import bind_actor, reset_actor

from .models import Role, RoleAbility
from .ownership import (
    AllowAll,
    Diagnostic,
    DiagnosticLog,
    Matcher,
    OwnershipResolver,
    context_matcher,
)
from .service import GrantRepository, MembershipRepository, RoleRepository, is_persisted

logger = structlog.get_logger()


ACTION_ALIASES: dict[str, tuple[str, ...]] = {
    "read": ("read", "show", "index"),
    "update": ("update", "edit"),
    "create": ("create", "new"),
    "destroy": ("destroy", "delete"),
}

# Matches every operation on its resource type
MANAGE = "manage"

DEFAULT_FAMILY = "default"
SCOPED_FAMILY = "scoped"


def expand_action(action: str) -> tuple[str, ...]:
    """'read' -> ('read', 'show', 'index'); unaliased actions map to themselves."""
    return ACTION_ALIASES.get(action, (action,))


def grant_family(grant: RoleAbility) -> str:
    return SCOPED_FAMILY if grant.is_context_scoped else DEFAULT_FAMILY


class AbilityState(str, Enum):
    UNINITIALIZED = "uninitialized"
    COMPILING = "compiling"
    READY = "ready"


class AbilityNotReadyError(RuntimeError):
    """An Ability was queried before compilation finished."""


@dataclass(frozen=True)
class Rule:
    """An installed allow rule for one operation on one resource type."""
    operation: str
    resource_type: str
    family: str
    role: str
    action: str
    matcher: Matcher

    @property
    def strategy(self) -> str:
        return self.matcher.strategy

    def allows(self, instance: Any, actor: Any, context: RequestContext) -> bool:
        if instance is None:
            return self.matcher.allows_class()
        return self.matcher.matches(instance, actor, context)

    def signature(self) -> tuple[Any, ...]:
        """Comparable description, used to check repeatable compilation."""
        return (
            self.operation,
            self.resource_type,
            self.family,
            self.role,
            self.action,
            self.strategy,
        )


class Ability:
    """
    Effective permission set for one actor in one authorization context.

    Lifecycle: UNINITIALIZED -> COMPILING -> READY. Every query method
    raises AbilityNotReadyError until compile() has finished.
    """

    def __init__(
        self,
        actor: Any,
        context: RequestContext | None = None,
        *,
        registry: ResourceRegistry | None = None,
        guest_role_name: str | None = None,
    ):
        self.actor = actor
        self.context: dict[str, Any] = dict(context or {})
        self.registry = registry or default_resources
        self.guest_role_name = guest_role_name or settings.auth.guest_role_name

        self.state = AbilityState.UNINITIALIZED
        self.roles: list[Role] = []
        self._log = DiagnosticLog()
        self._defined: set[tuple[str, str, str]] = set()
        self._rules: dict[tuple[str, str], dict[str, Rule]] = {}

    # ============================================================
    # CONSTRUCTION
    # ============================================================

    @classmethod
    async def build(
        cls,
        db: AsyncSession,
        actor: Any,
        context: RequestContext | None = None,
        **kwargs: Any,
    ) -> "Ability":
        """Create and compile an Ability; the result is always READY."""
        ability = cls(actor, context, **kwargs)
        await ability.compile(db)
        return ability

    @property
    def is_guest(self) -> bool:
        return not is_persisted(self.actor)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return list(self._log.entries)

    async def compile(self, db: AsyncSession) -> None:
        if self.state is not AbilityState.UNINITIALIZED:
            raise RuntimeError(f"Ability already {self.state.value}")

        self.state = AbilityState.COMPILING
        token = bind_actor(None if self.is_guest else self.actor.id)
        try:
            self.roles = await self._load_roles(db)
            resolver = OwnershipResolver(
                db,
                None if self.is_guest else self.actor,
                self.registry,
                self._log,
                default_user_key=settings.auth.ownership_user_key,
            )
            grants = GrantRepository(db)

            for role in self.roles:
                for grant in await grants.for_role(role.id):
                    await self._install(role, grant, resolver)
        except BaseException:
            self.state = AbilityState.UNINITIALIZED
            raise
        finally:
            reset_actor(token)

        self.state = AbilityState.READY
        logger.debug(
            "rbac.ability_compiled",
            roles=[role.name for role in self.roles],
            rules=sum(len(family) for family in self._rules.values()),
            diagnostics=len(self._log.entries),
        )

    async def _load_roles(self, db: AsyncSession) -> list[Role]:
        if not self.is_guest:
            return await MembershipRepository(db).active_roles(self.actor.id)

        guest_role = await RoleRepository(db).get_by_name(self.guest_role_name)
        if guest_role is None or not guest_role.active:
            return []
        return [guest_role]

    async def _install(self, role: Role, grant: RoleAbility, resolver: OwnershipResolver) -> None:
        permission = grant.permission
        resource_type = self.registry.resolve(permission.resource_type)
        if resource_type is None:
            self._log.record(
                "rbac.resource_type_unresolved",
                f"Resource type '{permission.resource_type}' is not registered; grant skipped",
                role=role.name,
                action=permission.action,
                resource_type=permission.resource_type,
            )
            return

        family = grant_family(grant)
        key = (permission.action, resource_type.name, family)
        if key in self._defined:
            return
        self._defined.add(key)

        if family == SCOPED_FAMILY:
            matcher = context_matcher(
                resource_type,
                self._log,
                role=role.name,
                action=permission.action,
            )
        elif grant.is_ownership_scoped:
            matcher = await resolver.resolve(grant, resource_type)
        else:
            matcher = AllowAll()

        for operation in expand_action(permission.action):
            installed = self._rules.setdefault((operation, resource_type.name), {})
            # An operation already covered through another action keeps its rule
            if family in installed:
                continue
            installed[family] = Rule(
                operation=operation,
                resource_type=resource_type.name,
                family=family,
                role=role.name,
                action=permission.action,
                matcher=matcher,
            )

    # ============================================================
    # QUERIES
    # ============================================================

    def _ensure_ready(self) -> None:
        if self.state is not AbilityState.READY:
            raise AbilityNotReadyError(f"Ability is {self.state.value}; compile it before querying")

    def _subject(self, subject: Any, instance: Any) -> tuple[ResourceType | None, Any]:
        # A model instance passed as the subject is both the type and the instance
        if instance is None and subject is not None and not isinstance(subject, (str, type, ResourceType)):
            instance = subject
        return self.registry.resolve(subject), instance

    def rules_for(self, operation: str, subject: Any) -> list[Rule]:
        """Installed rules for an operation, including manage rules."""
        self._ensure_ready()
        resource_type, _ = self._subject(subject, None)
        if resource_type is None:
            return []

        rules: list[Rule] = []
        for op in (operation, MANAGE) if operation != MANAGE else (MANAGE,):
            installed = self._rules.get((op, resource_type.name), {})
            rules.extend(installed[family] for family in sorted(installed))
        return rules

    def decide(self, operation: str, subject: Any, instance: Any = None) -> PolicyDecision:
        """Full decision with the reason and the rule that matched."""
        self._ensure_ready()
        resource_type, instance = self._subject(subject, instance)
        if resource_type is None:
            self._log.record(
                "rbac.resource_type_unresolved",
                f"Cannot evaluate '{operation}' on unregistered subject",
                operation=operation,
                subject=repr(subject),
            )
            return PolicyDecision.deny("Unknown resource type")

        for rule in self.rules_for(operation, resource_type):
            if rule.allows(instance, self.actor, self.context):
                return PolicyDecision.allow(
                    f"Granted by role {rule.role}",
                    role=rule.role,
                    strategy=rule.strategy,
                    family=rule.family,
                )

        return PolicyDecision.deny(
            f"Missing permission: {operation} {resource_type.name}",
            resource_type=resource_type.name,
        )

    def can(self, operation: str, subject: Any, instance: Any = None) -> bool:
        """
        Check an operation.

        Args:
            operation: "read", "show", "update", ...
            subject: resource type name, model class, or an instance
            instance: the instance, when subject is a name or class
        """
        return self.decide(operation, subject, instance).allowed

    def cannot(self, operation: str, subject: Any, instance: Any = None) -> bool:
        return not self.can(operation, subject, instance)

    def filter_authorized(self, operation: str, instances: Iterable[Any]) -> list[Any]:
        """In-memory filter; works for every rule kind."""
        return [instance for instance in instances if self.can(operation, instance)]

    def permission_keys(self) -> list[str]:
        """'ResourceType:operation' for every rule that can grant something."""
        self._ensure_ready()
        keys = {
            f"{resource_type}:{operation}"
            for (operation, resource_type), installed in self._rules.items()
            if any(rule.matcher.allows_class() for rule in installed.values())
        }
        return sorted(keys)

    def rule_signatures(self) -> list[tuple[Any, ...]]:
        self._ensure_ready()
        return sorted(
            rule.signature()
            for installed in self._rules.values()
            for rule in installed.values()
        )

    # ============================================================
    # QUERY SCOPING
    # ============================================================

    def scope_for(self, operation: str, subject: Any) -> DataScope:
        """
        Rows an operation may touch, for an external query layer.

        No rules -> none; any unrestricted rule -> global; one restricting
        rule -> its scope; several -> DataScope(level="any") of their scopes.
        """
        scopes = [rule.matcher.scope() for rule in self.rules_for(operation, subject)]
        scopes = [scope for scope in scopes if not scope.is_empty]
        if not scopes:
            return DataScope.none()
        if any(scope.is_global for scope in scopes):
            return DataScope.global_access()
        if len(scopes) == 1:
            return scopes[0]
        return DataScope(level="any", filters={"scopes": scopes})

    def apply_to_query(self, query: Select, operation: str, model: Any) -> Select:
        """
        Restrict a SELECT to the rows the actor may act on.

        Per-instance rules cannot be expressed in SQL and contribute no rows;
        use filter_authorized() for those resource types.
        """
        resource_type = self.registry.resolve(model)
        if resource_type is None:
            self._log.record(
                "rbac.resource_type_unresolved",
                "Cannot scope a query for an unregistered model",
                operation=operation,
                subject=repr(model),
            )
            return query.where(false())

        scope = self.scope_for(operation, resource_type)
        if scope.is_global:
            return query
        return query.where(self._scope_clause(scope, resource_type, operation))

    def _scope_clause(self, scope: DataScope, resource_type: ResourceType, operation: str) -> Any:
        if scope.level == "any":
            return or_(*(self._scope_clause(s, resource_type, operation) for s in scope.filters["scopes"]))
        if scope.level == "ownership":
            return and_(*(resource_type.column(name) == value for name, value in scope.filters.items()))
        if scope.level == "ids":
            return and_(*(resource_type.column(name).in_(list(values)) for name, values in scope.filters.items()))
        if scope.level == "predicate":
            logger.info(
                "rbac.scope_not_expressible",
                operation=operation,
                resource_type=resource_type.name,
            )
        return false()


# ============================================================
# POLICY ENGINE ADAPTER
# ============================================================

@AuthRegistry.policy_engine("rbac")
class RBACPolicyEngine(PolicyEngine):
    """
    PolicyEngine backed by a freshly compiled Ability per call.

    Actions may carry their resource type: "Order:update". Otherwise the
    resource argument (instance, class or name) supplies it.

    Configuration:
        session_factory: async session factory (default: application database)
        registry: resource registry (default: module-level registry)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], Any] | None = None,
        registry: ResourceRegistry | None = None,
        **kwargs: Any,
    ):
        self._session_factory = session_factory
        self.registry = registry or default_resources

    def _sessions(self) -> Callable[[], Any]:
        if self._session_factory is None:
            from rolegate.core.database import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    async def ability_for(
        self,
        actor: Any,
        context: dict[str, Any] | None = None,
        db: AsyncSession | None = None,
    ) -> Ability:
        """Compile an Ability, on the given session or a short-lived one."""
        if db is not None:
            return await Ability.build(db, actor, context, registry=self.registry)
        async with self._sessions()() as session:
            return await Ability.build(session, actor, context, registry=self.registry)

    async def evaluate(
        self,
        actor: Any,
        action: str,
        resource: Any | None = None,
        context: dict[str, Any] | None = None,
    ) -> PolicyDecision:
        if ":" in action:
            resource_type, operation = action.split(":", 1)
            subject, instance = resource_type, resource
        else:
            operation, subject, instance = action, resource, None

        if subject is None:
            return PolicyDecision.deny("No resource type given")

        ability = await self.ability_for(actor, context)
        return ability.decide(operation, subject, instance)

    async def get_permissions(
        self,
        actor: Any,
        resource: Any | None = None,
    ) -> set[str]:
        ability = await self.ability_for(actor)
        keys = set(ability.permission_keys())
        if resource is None:
            return keys

        resource_type = self.registry.resolve(resource)
        if resource_type is None:
            return set()
        prefix = f"{resource_type.name}:"
        return {key for key in keys if key.startswith(prefix)}

