"""
Authorization service - Request-facing facade over a compiled Ability.

Usage:
    # In route handlers:
    async def handler(auth: Authorize):
        await auth.require("update", order)
        query = await auth.scoped(select(Order))
"""

from typing import TYPE_CHECKING, Any, Sequence

from fastapi import HTTPException, status

from .interfaces import PolicyDecision, DataScope

if TYPE_CHECKING:
    from rolegate.extensions.auth.rbac.engine import Ability


class AuthorizationService:
    """
    Authorization checks for one actor in one request.

    The Ability is compiled once (per request) and every check here is an
    in-memory lookup against it.

    Usage:
        auth = AuthorizationService(actor=current_user, ability=ability)
        await auth.require("approve", transaction)
        query = await auth.scoped(select(Transaction))
    """

    def __init__(self, actor: Any, ability: "Ability"):
        self.actor = actor
        self.ability = ability

    async def authorize(
        self,
        action: str,
        resource: Any | None = None,
        instance: Any | None = None,
    ) -> PolicyDecision:
        """
        Check if the actor can perform action on resource.

        Args:
            action: Operation ("update") or "ResourceType:operation"
            resource: Resource instance, class or type name
            instance: Instance, when resource is a class or name

        Returns:
            PolicyDecision (does not raise)
        """
        if ":" in action:
            resource_type, action = action.split(":", 1)
            resource, instance = resource_type, instance or resource

        if resource is None:
            return PolicyDecision.deny("No resource type given")

        return self.ability.decide(action, resource, instance)

    async def authorize_or_raise(
        self,
        action: str,
        resource: Any | None = None,
        instance: Any | None = None,
    ) -> None:
        """
        Check authorization or raise HTTPException(403).

        Raises:
            HTTPException: 403 if not authorized
        """
        decision = await self.authorize(action, resource, instance)

        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=decision.reason or "Permission denied",
            )

    async def require(self, action: str, resource: Any | None = None, instance: Any | None = None) -> None:
        """
        Convenience method: require authorization or raise.

        Usage:
            await auth.require("approve", transaction)
            await auth.require("index", "Transaction")
        """
        await self.authorize_or_raise(action, resource, instance)

    async def can(self, action: str, resource: Any | None = None, instance: Any | None = None) -> bool:
        """
        Check if action is allowed (returns bool, no exception).

        Usage:
            if await auth.can("destroy", resource):
                # show delete button
        """
        decision = await self.authorize(action, resource, instance)
        return decision.allowed

    def data_scope(self, action: str, model: Any) -> DataScope:
        return self.ability.scope_for(action, model)

    async def scoped(
        self,
        query: Any,
        model: type | None = None,
        action: str = "index",
    ) -> Any:
        """
        Apply the actor's data scope to a query.

        Usage:
            query = await auth.scoped(select(Transaction))

        If model is not provided, attempts to extract it from the query.
        """
        if model is None:
            try:
                model = query.column_descriptions[0]["entity"]
            except (AttributeError, IndexError, KeyError):
                raise ValueError("Could not determine model from query. Please provide model parameter.")

        return self.ability.apply_to_query(query, action, model)

    async def filter_authorized(self, action: str, resources: Sequence[Any]) -> list[Any]:
        """Filter a list of resources to only those the actor can act on."""
        return self.ability.filter_authorized(action, resources)

    async def get_permissions(self, resource: Any | None = None) -> set[str]:
        """
        Permission strings ("ResourceType:operation") the actor holds.

        Args:
            resource: Optional resource type, class or instance to filter by
        """
        keys = set(self.ability.permission_keys())
        if resource is None:
            return keys

        resource_type = self.ability.registry.resolve(resource)
        if resource_type is None:
            return set()
        return {key for key in keys if key.startswith(f"{resource_type.name}:")}
