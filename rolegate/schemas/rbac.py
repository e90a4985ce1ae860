"""
RBAC schemas - grant options and ownership configuration.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GrantContext(str, Enum):
    """Applicability classifier of a grant."""
    GLOBAL = "global"
    OWNED = "owned"
    SCOPED = "scoped"


class OwnershipConditions(BaseModel):
    """
    Field mapping for join-model ownership.

    foreign_key: field on the ownership source pointing at the resource
        (or at something the resource references by the same name)
    user_key: field on the ownership source holding the actor id
        (unset means AUTH_OWNERSHIP_USER_KEY)
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    foreign_key: str | None = Field(default=None, alias="foreignKey")
    user_key: str | None = Field(default=None, alias="userKey")

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> "OwnershipConditions":
        """Parse the JSON stored on a grant (None -> empty mapping)."""
        return cls.model_validate(raw or {})


class GrantOptions(BaseModel):
    """
    Options for granting a permission to a role.

    Examples:
        GrantOptions()                                     # global access
        GrantOptions(owned=True)                           # conventional ownership
        GrantOptions(
            owned=True,
            ownership_source="StoreManager",
            ownership_conditions=OwnershipConditions(foreign_key="store_id"),
        )
        GrantOptions(context=GrantContext.SCOPED)          # request-context rule
    """

    owned: bool = False
    context: GrantContext | None = GrantContext.GLOBAL
    ownership_source: str | None = Field(default=None, max_length=100)
    ownership_conditions: OwnershipConditions | None = None

    @model_validator(mode="after")
    def align_context(self) -> "GrantOptions":
        # An owned grant without an explicit classifier is an "owned" grant
        if self.owned and self.context == GrantContext.GLOBAL:
            self.context = GrantContext.OWNED
        return self

    def stored_conditions(self) -> dict[str, Any] | None:
        if self.ownership_conditions is None:
            return None
        return self.ownership_conditions.model_dump(exclude_none=True)
