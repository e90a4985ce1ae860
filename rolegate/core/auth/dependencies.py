"""
FastAPI dependencies for authorization.

The host application authenticates the request and stores the actor on
request.state.actor (None, or absent, for guests). Everything here builds
on that.

Usage:
    from rolegate.core.auth import Authorize, CurrentAbility

    @router.get("/stores/{store_id}/orders")
    async def handler(store_id: int, ability: CurrentAbility):
        # ability.context == {"store_id": "<store_id>"}
        ...

    @router.post("/orders/{id}/approve")
    async def handler(id: int, auth: Authorize):
        await auth.require("approve", order)
"""

from typing import Annotated, Any
from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rolegate.core.config import settings
from rolegate.core.database import get_db

from .service import AuthorizationService
from .interfaces import PolicyEngine
from .registry import AuthRegistry


# ============================================================
# COMPONENT FACTORIES
# ============================================================

@lru_cache
def get_policy_engine() -> PolicyEngine:
    """
    Get configured policy engine.

    Reads from AUTH_POLICY_ENGINE environment variable.
    Default: "rbac" (requires rolegate.extensions.auth.rbac to be imported)
    """
    engine_name = settings.auth.policy_engine

    return AuthRegistry.get_policy_engine(engine_name)


# ============================================================
# ACTOR AND CONTEXT
# ============================================================

async def get_current_actor(request: Request) -> Any:
    """Actor placed on the request by the host's authentication layer."""
    return getattr(request.state, "actor", None)


def build_request_context(
    params: dict[str, Any],
    suffix: str | None = None,
    mappings: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Authorization context from request parameters.

    Every parameter ending in the suffix ("_id") is kept under its own
    name; mappings rename others, e.g. {"id": "store_id"} on /stores/{id}.
    Empty values are dropped.
    """
    suffix = suffix or settings.auth.context_param_suffix
    context = {
        key: value
        for key, value in params.items()
        if key.endswith(suffix) and value not in (None, "")
    }
    for param_key, context_key in (mappings or {}).items():
        value = params.get(param_key)
        if value not in (None, ""):
            context[context_key] = value
    return context


async def get_request_context(request: Request) -> dict[str, Any]:
    """Path parameters override query parameters of the same name."""
    params: dict[str, Any] = dict(request.query_params)
    params.update(request.path_params)
    return build_request_context(params)


def context_mapping(**mappings: str):
    """
    Dependency factory renaming parameters into context keys.

    Usage:
        @router.get("/stores/{id}")
        async def show(ability: Annotated[Any, Depends(ability_with(context_mapping(id="store_id")))]):
            ...
    """
    async def dependency(request: Request) -> dict[str, Any]:
        params: dict[str, Any] = dict(request.query_params)
        params.update(request.path_params)
        return build_request_context(params, mappings=mappings)
    return dependency


# ============================================================
# ABILITY / AUTHORIZATION SERVICE
# ============================================================

async def get_ability(
    actor: Any = Depends(get_current_actor),
    context: dict[str, Any] = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    engine: PolicyEngine = Depends(get_policy_engine),
) -> Any:
    """
    Compile the actor's Ability once for this request.

    Usage:
        async def handler(ability: CurrentAbility):
            if ability.can("update", order):
                ...
    """
    return await engine.ability_for(actor, context, db=db)


def ability_with(context_dependency):
    """Build a get_ability variant using a custom context dependency."""
    async def dependency(
        actor: Any = Depends(get_current_actor),
        context: dict[str, Any] = Depends(context_dependency),
        db: AsyncSession = Depends(get_db),
        engine: PolicyEngine = Depends(get_policy_engine),
    ) -> Any:
        return await engine.ability_for(actor, context, db=db)
    return dependency


async def get_authorization_service(
    actor: Any = Depends(get_current_actor),
    ability: Any = Depends(get_ability),
) -> AuthorizationService:
    """
    Get authorization service for the current actor.

    Usage:
        async def handler(auth: Authorize):
            await auth.require("update", resource)
    """
    return AuthorizationService(actor=actor, ability=ability)


# ============================================================
# TYPE ALIASES FOR CLEAN SIGNATURES
# ============================================================

# Actor or None (guest)
CurrentActor = Annotated[Any, Depends(get_current_actor)]

# Compiled Ability for this request
CurrentAbility = Annotated[Any, Depends(get_ability)]

# Authorization service
Authorize = Annotated[AuthorizationService, Depends(get_authorization_service)]
