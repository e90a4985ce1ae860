"""
Tests for ownership-restricted and context-scoped grants.
"""

import pytest

from rolegate.core.config import settings
from rolegate.schemas.rbac import GrantContext

from tests.resources import (
    Board,
    Comment,
    Document,
    Gadget,
    Kiosk,
    Note,
    Order,
    Post,
    PostManager,
    Project,
    ProjectMember,
    StoreManager,
    Ticket,
    Upload,
)


async def owned_ability(rbac, user, action, resource_type, context=None, **options):
    role = await rbac.role("Owner")
    await rbac.grant(role, action, resource_type, owned=True, **options)
    await rbac.assign(user, role)
    return await rbac.ability(user, context)


def strategy_of(ability, operation, resource_type):
    return ability.rules_for(operation, resource_type)[0].strategy


# ============ Join model ============


@pytest.mark.asyncio
async def test_join_model_through_shared_foreign_key(db, rbac, test_user, other_user):
    db.add_all([
        StoreManager(user_id=test_user.id, store_id=5),
        StoreManager(user_id=other_user.id, store_id=6),
    ])
    await db.flush()

    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Order",
        ownership_source="StoreManager",
        ownership_conditions={"foreign_key": "store_id"},
    )

    assert ability.can("update", Order(id=1, store_id=5))
    assert ability.cannot("update", Order(id=2, store_id=6))
    assert ability.can("edit", "Order")
    assert strategy_of(ability, "update", "Order") == "join_model"


@pytest.mark.asyncio
async def test_join_model_pointing_at_resource_id(db, rbac, test_user):
    """Join rows whose foreign key the resource lacks are matched on the resource id."""
    db.add_all([
        PostManager(user_id=test_user.id, post_id=10),
        PostManager(user_id=test_user.id, post_id=20),
    ])
    await db.flush()

    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Post",
        ownership_source="PostManager",
        ownership_conditions={"foreign_key": "post_id", "user_key": "user_id"},
    )

    assert ability.can("update", Post(id=10))
    assert ability.can("update", Post(id=20))
    assert ability.cannot("update", Post(id=30))


@pytest.mark.asyncio
async def test_join_model_without_rows_denies(rbac, test_user):
    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Post",
        ownership_source="PostManager",
        ownership_conditions={"foreign_key": "post_id"},
    )

    for post_id in (10, 20, 30):
        assert ability.cannot("update", Post(id=post_id, user_id=test_user.id))
    assert ability.cannot("update", "Post")


@pytest.mark.asyncio
async def test_join_model_with_camel_case_conditions(db, rbac, test_user):
    db.add(StoreManager(user_id=test_user.id, store_id=5))
    await db.flush()

    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Order",
        ownership_source="StoreManager",
        ownership_conditions={"foreignKey": "store_id", "userKey": "user_id"},
    )

    assert ability.can("update", Order(id=1, store_id=5))


@pytest.mark.asyncio
async def test_join_model_missing_foreign_key(db, rbac, test_user):
    """A join model without a foreign key denies and records a diagnostic."""
    db.add(StoreManager(user_id=test_user.id, store_id=5))
    await db.flush()

    ability = await owned_ability(rbac, test_user, "update", "Order", ownership_source="StoreManager")

    assert ability.cannot("update", Order(id=1, store_id=5))
    assert "rbac.ownership_misconfigured" in [d.event for d in ability.diagnostics]


@pytest.mark.asyncio
async def test_join_model_unknown_field(db, rbac, test_user):
    db.add(StoreManager(user_id=test_user.id, store_id=5))
    await db.flush()

    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Order",
        ownership_source="StoreManager",
        ownership_conditions={"foreign_key": "warehouse_id"},
    )

    assert ability.cannot("update", Order(id=1, store_id=5))
    assert "rbac.ownership_misconfigured" in [d.event for d in ability.diagnostics]


@pytest.mark.asyncio
async def test_join_model_uses_configured_user_key(db, rbac, test_user, monkeypatch):
    """Conditions without a user_key fall back to AUTH_OWNERSHIP_USER_KEY."""
    monkeypatch.setattr(settings.auth, "ownership_user_key", "manager_id")
    db.add(StoreManager(user_id=test_user.id, store_id=5))
    await db.flush()

    role = await rbac.role("Owner")
    await rbac.grant(
        role,
        "update",
        "Order",
        owned=True,
        ownership_source="StoreManager",
        ownership_conditions={"foreign_key": "store_id"},
    )
    await rbac.grant(
        role,
        "read",
        "Order",
        owned=True,
        ownership_source="StoreManager",
        ownership_conditions={"foreign_key": "store_id", "user_key": "user_id"},
    )
    await rbac.assign(test_user, role)
    ability = await rbac.ability(test_user)

    assert ability.cannot("update", Order(id=1, store_id=5))
    assert ability.can("show", Order(id=1, store_id=5))
    misconfigured = [d for d in ability.diagnostics if d.event == "rbac.ownership_misconfigured"]
    assert "manager_id" in misconfigured[0].message


@pytest.mark.asyncio
async def test_join_model_unknown_source(rbac, test_user):
    ability = await owned_ability(
        rbac,
        test_user,
        "update",
        "Order",
        ownership_source="Ghost",
        ownership_conditions={"foreign_key": "store_id"},
    )

    assert ability.cannot("update", Order(id=1, store_id=5))
    assert "rbac.ownership_source_unresolved" in [d.event for d in ability.diagnostics]


# ============ Capabilities ============


@pytest.mark.asyncio
async def test_ownable_resource(rbac, test_user, other_user):
    ability = await owned_ability(rbac, test_user, "update", "Document")

    assert ability.can("update", Document(id=1, author_id=test_user.id))
    assert ability.can("update", Document(id=2, author_id=other_user.id, reviewer_id=test_user.id))
    assert ability.cannot("update", Document(id=3, author_id=other_user.id))
    assert strategy_of(ability, "update", "Document") == "owned_by"


@pytest.mark.asyncio
async def test_user_scoped_resource(db, rbac, test_user, other_user):
    db.add_all([
        Project(id=1, name="Mine"),
        Project(id=2, name="Theirs"),
        Project(id=3, name="Shared"),
    ])
    await db.flush()
    db.add_all([
        ProjectMember(project_id=1, user_id=test_user.id),
        ProjectMember(project_id=2, user_id=other_user.id),
        ProjectMember(project_id=3, user_id=test_user.id),
        ProjectMember(project_id=3, user_id=other_user.id),
    ])
    await db.flush()

    ability = await owned_ability(rbac, test_user, "read", "Project")

    assert ability.can("show", Project(id=1))
    assert ability.can("show", Project(id=3))
    assert ability.cannot("show", Project(id=2))
    assert strategy_of(ability, "show", "Project") == "scoped_for_user"


@pytest.mark.asyncio
async def test_user_scoped_resource_without_rows(rbac, test_user):
    ability = await owned_ability(rbac, test_user, "read", "Project")

    assert ability.cannot("show", Project(id=1))


@pytest.mark.asyncio
async def test_failing_owned_by_denies(rbac, test_user):
    ability = await owned_ability(rbac, test_user, "update", "Gadget")

    assert ability.cannot("update", Gadget(id=1))
    assert ability.decide("update", Gadget(id=1)).allowed is False

    failures = [d for d in ability.diagnostics if d.event == "rbac.capability_failed"]
    assert len(failures) == 2
    assert failures[0].details["strategy"] == "owned_by"
    assert failures[0].details["resource_type"] == "Gadget"


@pytest.mark.asyncio
async def test_failing_scoped_for_user_denies(rbac, test_user):
    ability = await owned_ability(rbac, test_user, "read", "Board")

    assert ability.cannot("show", Board(id=1))
    assert ability.cannot("index", "Board")
    assert "rbac.capability_failed" in [d.event for d in ability.diagnostics]


@pytest.mark.asyncio
async def test_failing_scope_check_denies(rbac, test_user):
    role = await rbac.role("Attendant")
    await rbac.grant(role, "update", "Kiosk", context=GrantContext.SCOPED)
    await rbac.assign(test_user, role)

    in_kiosk = await rbac.ability(test_user, {"kiosk_id": 1})
    no_context = await rbac.ability(test_user)

    assert in_kiosk.can("update", Kiosk(id=1))
    assert no_context.cannot("update", Kiosk(id=1))
    assert "rbac.capability_failed" in [d.event for d in no_context.diagnostics]


# ============ Conventional fields ============


@pytest.mark.asyncio
async def test_self_ownership(rbac, test_user, other_user):
    ability = await owned_ability(rbac, test_user, "update", "User")

    assert ability.can("update", test_user)
    assert ability.cannot("update", other_user)
    assert strategy_of(ability, "update", "User") == "self"


@pytest.mark.asyncio
async def test_user_id_ownership(rbac, test_user, other_user):
    ability = await owned_ability(rbac, test_user, "update", "Post")

    assert ability.can("update", Post(id=1, user_id=test_user.id))
    assert ability.cannot("update", Post(id=2, user_id=other_user.id))
    assert ability.cannot("update", Post(id=3))
    assert strategy_of(ability, "update", "Post") == "user_id"


@pytest.mark.asyncio
async def test_creator_id_ownership(rbac, test_user, other_user):
    ability = await owned_ability(rbac, test_user, "destroy", "Comment")

    assert ability.can("delete", Comment(id=1, creator_id=test_user.id))
    assert ability.cannot("delete", Comment(id=2, creator_id=other_user.id))
    assert strategy_of(ability, "delete", "Comment") == "creator_id"


@pytest.mark.asyncio
async def test_instance_attribute_fallback(rbac, test_user, other_user):
    """Types that declare no ownership field are checked per instance."""
    ability = await owned_ability(rbac, test_user, "update", "Upload")

    assert ability.can("update", Upload(id=1, creator_id=test_user.id))
    assert ability.cannot("update", Upload(id=2, creator_id=other_user.id))
    assert strategy_of(ability, "update", "Upload") == "instance_owner"


@pytest.mark.asyncio
async def test_no_ownership_information_denies(rbac, test_user):
    ability = await owned_ability(rbac, test_user, "update", "Note")

    assert ability.cannot("update", Note(id=1, body="orphan"))


@pytest.mark.asyncio
async def test_owned_grant_allows_collection_check(rbac, test_user):
    """Class-level checks pass for owned rules; instances decide the rest."""
    ability = await owned_ability(rbac, test_user, "read", "Post")

    assert ability.can("index", "Post")
    assert ability.can("index", Post)


# ============ Request context ============


@pytest.mark.asyncio
async def test_scoped_grant_uses_request_context(rbac, test_user):
    role = await rbac.role("Clerk")
    await rbac.grant(role, "update", "Ticket", context=GrantContext.SCOPED)
    await rbac.assign(test_user, role)

    ability = await rbac.ability(test_user, {"store_id": "5"})

    assert ability.can("update", Ticket(id=1, store_id=5))
    assert ability.cannot("update", Ticket(id=2, store_id=6))
    assert ability.can("update", "Ticket")


@pytest.mark.asyncio
async def test_scoped_grant_without_context(rbac, test_user):
    role = await rbac.role("Clerk")
    await rbac.grant(role, "update", "Ticket", context=GrantContext.SCOPED)
    await rbac.assign(test_user, role)

    ability = await rbac.ability(test_user)

    assert ability.cannot("update", Ticket(id=1, store_id=5))


@pytest.mark.asyncio
async def test_context_is_not_shared_between_abilities(rbac, test_user):
    role = await rbac.role("Clerk")
    await rbac.grant(role, "update", "Ticket", context=GrantContext.SCOPED)
    await rbac.assign(test_user, role)

    store_five = await rbac.ability(test_user, {"store_id": "5"})
    store_six = await rbac.ability(test_user, {"store_id": "6"})
    ticket = Ticket(id=1, store_id=5)

    assert store_five.can("update", ticket)
    assert store_six.cannot("update", ticket)


@pytest.mark.asyncio
async def test_scoped_grant_on_type_without_capability(rbac, test_user):
    role = await rbac.role("Clerk")
    await rbac.grant(role, "update", "Post", context=GrantContext.SCOPED)
    await rbac.assign(test_user, role)

    ability = await rbac.ability(test_user, {"store_id": "5"})

    assert ability.cannot("update", Post(id=1, user_id=test_user.id))
    assert ability.cannot("update", "Post")
    assert "rbac.scope_capability_missing" in [d.event for d in ability.diagnostics]
