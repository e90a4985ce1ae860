"""Pydantic schemas."""

from .rbac import GrantContext, GrantOptions, OwnershipConditions

__all__ = ["GrantContext", "GrantOptions", "OwnershipConditions"]
