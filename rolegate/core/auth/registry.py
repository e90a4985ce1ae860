"""
Authorization plugin and resource registries.

AuthRegistry lets policy engines register themselves by name without
modifying factory code.

ResourceRegistry maps the resource-type names stored on permissions
("Order", "Post") to the application classes they describe. It is
populated explicitly at startup; a name that was never registered simply
does not resolve.

Usage:
    @AuthRegistry.policy_engine("rbac")
    class RBACPolicyEngine(PolicyEngine):
        ...

    resources.register_actor(User)
    resources.register(Order)

    @resources.resource("Invoice")
    class Invoice(Base):
        ...
"""

from dataclasses import dataclass, field
from typing import Type, Callable, Any, Iterable

from sqlalchemy import inspect

from .interfaces import PolicyEngine, Ownable, UserScoped, ContextScoped


class AuthRegistry:
    """
    Central registry for authorization components.

    Components register themselves using decorators.
    """

    _policy_engines: dict[str, Type[PolicyEngine]] = {}

    @classmethod
    def policy_engine(cls, name: str) -> Callable[[Type[PolicyEngine]], Type[PolicyEngine]]:
        """
        Decorator to register a policy engine.

        Usage:
            @AuthRegistry.policy_engine("rbac")
            class RBACPolicyEngine(PolicyEngine):
                ...
        """
        def decorator(engine_class: Type[PolicyEngine]) -> Type[PolicyEngine]:
            cls._policy_engines[name] = engine_class
            return engine_class
        return decorator

    @classmethod
    def get_policy_engine(cls, name: str, **kwargs: Any) -> PolicyEngine:
        """
        Get a policy engine by name.

        Raises:
            ValueError: If engine not found
        """
        engine_class = cls._policy_engines.get(name)
        if not engine_class:
            available = list(cls._policy_engines.keys())
            raise ValueError(
                f"Unknown policy engine: '{name}'. "
                f"Available: {available}"
            )
        return engine_class(**kwargs)

    @classmethod
    def list_policy_engines(cls) -> list[str]:
        """List all registered policy engine names."""
        return list(cls._policy_engines.keys())

    @classmethod
    def has_policy_engine(cls, name: str) -> bool:
        """Check if a policy engine is registered."""
        return name in cls._policy_engines


# ============================================================
# RESOURCE TYPES
# ============================================================

def _mapped_fields(model: type) -> frozenset[str]:
    mapper = inspect(model, raiseerr=False)
    if mapper is None:
        return frozenset()
    return frozenset(attr.key for attr in mapper.column_attrs)


@dataclass(frozen=True)
class ResourceType:
    """
    Handle for a registered resource type.

    Attributes:
        name: Name used on permissions (e.g. "Order")
        model: The application class
        fields: Column/field names the type exposes
    """
    name: str
    model: type
    fields: frozenset[str] = field(default_factory=frozenset)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def column(self, name: str) -> Any:
        """Class-level attribute for a field (a SQLAlchemy column for mapped types)."""
        return getattr(self.model, name)

    @property
    def is_mapped(self) -> bool:
        return inspect(self.model, raiseerr=False) is not None

    @property
    def ownable(self) -> bool:
        return issubclass(self.model, Ownable)

    @property
    def user_scoped(self) -> bool:
        return issubclass(self.model, UserScoped)

    @property
    def context_scoped(self) -> bool:
        return issubclass(self.model, ContextScoped)

    def describes(self, instance: Any) -> bool:
        return isinstance(instance, self.model)


class ResourceRegistry:
    """
    Explicit name -> resource type registry.

    Lookups accept a name, a registered class, or an instance of one.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, ResourceType] = {}
        self._by_model: dict[type, ResourceType] = {}
        self._actor: ResourceType | None = None

    def register(
        self,
        model: type,
        name: str | None = None,
        fields: Iterable[str] | None = None,
    ) -> ResourceType:
        """
        Register a resource type.

        Args:
            model: Application class (SQLAlchemy model or plain class)
            name: Name stored on permissions (default: class name)
            fields: Field names for unmapped classes (mapped classes are introspected)
        """
        resource_type = ResourceType(
            name=name or model.__name__,
            model=model,
            fields=frozenset(fields) if fields is not None else _mapped_fields(model),
        )
        self._by_name[resource_type.name] = resource_type
        self._by_model[model] = resource_type
        return resource_type

    def register_actor(self, model: type, name: str | None = None) -> ResourceType:
        """Register the actor class (enables self-ownership rules)."""
        self._actor = self.register(model, name=name)
        return self._actor

    def resource(self, name: str | None = None) -> Callable[[type], type]:
        """Decorator form of register()."""
        def decorator(model: type) -> type:
            self.register(model, name=name)
            return model
        return decorator

    def resolve(self, subject: Any) -> ResourceType | None:
        """Resolve a name, class or instance; None when unknown."""
        if isinstance(subject, ResourceType):
            return subject
        if isinstance(subject, str):
            return self._by_name.get(subject)
        if isinstance(subject, type):
            return self._by_model.get(subject)
        if subject is None:
            return None
        return self._by_model.get(type(subject))

    @property
    def actor_type(self) -> ResourceType | None:
        return self._actor

    def is_actor_type(self, resource_type: ResourceType) -> bool:
        return self._actor is not None and resource_type.model is self._actor.model

    def names(self) -> list[str]:
        return sorted(self._by_name)

    def clear(self) -> None:
        self._by_name.clear()
        self._by_model.clear()
        self._actor = None

    def __contains__(self, subject: Any) -> bool:
        return self.resolve(subject) is not None


# Default registry populated by the host application
resources = ResourceRegistry()
