"""
Authorization module.

Usage:
=============

Resource Authorization
----------------------
    from rolegate.core.auth import Authorize

    @router.post("/orders/{id}/approve")
    async def approve(id: int, auth: Authorize):
        order = await get_order(id)
        await auth.require("approve", order)
        ...

Data Scoping
------------
    @router.get("/orders")
    async def list_orders(auth: Authorize):
        query = await auth.scoped(select(Order))
        ...

Configuration:
==============

Environment variables (or in config):
- AUTH_POLICY_ENGINE: "rbac" (default)
- AUTH_GUEST_ROLE_NAME: "Guest" (default)
- AUTH_DEFAULT_ROLE_NAME: "Basic User" (default)

Extensibility:
=============

Add custom policy engines:
    @AuthRegistry.policy_engine("custom")
    class CustomPolicyEngine(PolicyEngine):
        ...

Register resource types:
    resources.register(Order)
"""

# Core interfaces (for type hints and custom implementations)
from .interfaces import (
    PolicyEngine,
    PolicyDecision,
    DataScope,
    RequestContext,
    Ownable,
    UserScoped,
    ContextScoped,
)

# Registries
from .registry import AuthRegistry, ResourceRegistry, ResourceType, resources

# Service (main facade)
from .service import AuthorizationService

# Dependencies (what you'll use in routes)
from .dependencies import (
    CurrentActor,
    CurrentAbility,
    Authorize,
    get_current_actor,
    get_request_context,
    build_request_context,
    context_mapping,
    ability_with,
    get_ability,
    get_authorization_service,
    get_policy_engine,
)

__all__ = [
    # Interfaces
    "PolicyEngine",
    "PolicyDecision",
    "DataScope",
    "RequestContext",
    "Ownable",
    "UserScoped",
    "ContextScoped",
    # Registries
    "AuthRegistry",
    "ResourceRegistry",
    "ResourceType",
    "resources",
    # Service
    "AuthorizationService",
    # Dependencies
    "CurrentActor",
    "CurrentAbility",
    "Authorize",
    "get_current_actor",
    "get_request_context",
    "build_request_context",
    "context_mapping",
    "ability_with",
    "get_ability",
    "get_authorization_service",
    "get_policy_engine",
]
