"""
Tests for role memberships and the default role policy.
"""

import pytest

from rolegate.core.config import settings
from rolegate.extensions.auth.rbac import (
    GuestActorError,
    MembershipService,
    UnknownRoleError,
    assign_default_role,
    install_default_role_policy,
)
from rolegate.models.user import User


@pytest.mark.asyncio
async def test_assign_role(rbac, test_user):
    role = await rbac.role("Editor")

    membership = await rbac.members.assign(test_user, role)

    assert membership.user_id == test_user.id
    assert membership.active is True
    assert await rbac.members.has_role(test_user, "editor")


@pytest.mark.asyncio
async def test_assign_by_name(rbac, test_user):
    await rbac.role("Editor")

    await rbac.members.assign(test_user, "Editor")

    assert await rbac.members.role_names(test_user) == ["Editor"]


@pytest.mark.asyncio
async def test_assign_unknown_role(rbac, test_user):
    with pytest.raises(UnknownRoleError):
        await rbac.members.assign(test_user, "Nobody")


@pytest.mark.asyncio
async def test_assign_to_guest_rejected(rbac):
    role = await rbac.role("Editor")

    with pytest.raises(GuestActorError):
        await rbac.members.assign(None, role)
    with pytest.raises(GuestActorError):
        await rbac.members.assign(User(email="unsaved@example.com", name="Unsaved"), role)

    assert await rbac.members.memberships.count() == 0


@pytest.mark.asyncio
async def test_assign_is_idempotent(rbac, test_user):
    role = await rbac.role("Editor")

    first = await rbac.members.assign(test_user, role)
    second = await rbac.members.assign(test_user, role)

    assert first.id == second.id
    assert await rbac.members.memberships.count(user_id=test_user.id) == 1


@pytest.mark.asyncio
async def test_assign_reactivates_membership(rbac, test_user):
    role = await rbac.role("Editor")
    await rbac.members.assign(test_user, role)
    await rbac.members.set_active(test_user, role, False)

    assert not await rbac.members.has_role(test_user, "Editor")

    membership = await rbac.members.assign(test_user, role)
    assert membership.active is True
    assert await rbac.members.has_role(test_user, "Editor")


@pytest.mark.asyncio
async def test_revoke_role(rbac, test_user):
    role = await rbac.role("Editor")
    await rbac.members.assign(test_user, role)

    assert await rbac.members.revoke(test_user, role) == 1
    assert await rbac.members.revoke(test_user, role) == 0
    assert not await rbac.members.has_role(test_user, "Editor")


@pytest.mark.asyncio
async def test_active_roles_ordered_by_priority(rbac, test_user):
    basic = await rbac.role("Basic User", priority=50)
    admin = await rbac.role("Administrator", priority=1)
    manager = await rbac.role("Role Manager", priority=25)
    await rbac.assign(test_user, basic, admin, manager)

    roles = await rbac.members.active_roles_for(test_user)

    assert [role.name for role in roles] == ["Administrator", "Role Manager", "Basic User"]
    assert (await rbac.members.highest_priority_role(test_user)).name == "Administrator"


@pytest.mark.asyncio
async def test_equal_priority_ordered_by_name(rbac, test_user):
    zeta = await rbac.role("Zeta", priority=10)
    alpha = await rbac.role("Alpha", priority=10)
    await rbac.assign(test_user, zeta, alpha)

    assert await rbac.members.role_names(test_user) == ["Alpha", "Zeta"]


@pytest.mark.asyncio
async def test_inactive_role_is_ignored(rbac, test_user):
    role = await rbac.role("Editor")
    await rbac.members.assign(test_user, role)
    await rbac.roles.update(role, active=False)

    assert await rbac.members.active_roles_for(test_user) == []


@pytest.mark.asyncio
async def test_role_checks(rbac, test_user):
    editor = await rbac.role("Editor")
    reviewer = await rbac.role("Reviewer")
    await rbac.role("Auditor")
    await rbac.assign(test_user, editor, reviewer)

    assert await rbac.members.has_any_role(test_user, "Auditor", "reviewer")
    assert not await rbac.members.has_any_role(test_user, "Auditor")
    assert await rbac.members.has_all_roles(test_user, "Editor", "Reviewer")
    assert not await rbac.members.has_all_roles(test_user, "Editor", "Auditor")


@pytest.mark.asyncio
async def test_guest_has_no_roles(rbac):
    assert await rbac.members.active_roles_for(None) == []
    assert await rbac.members.highest_priority_role(None) is None


@pytest.mark.asyncio
async def test_assignment_hooks_fire(rbac, hook_manager, test_user):
    events = []

    @hook_manager.on("role.assigned")
    async def on_assigned(actor, role, **kwargs):
        events.append(("assigned", role.name))

    @hook_manager.on("role.revoked")
    async def on_revoked(actor, role, **kwargs):
        events.append(("revoked", role.name))

    role = await rbac.role("Editor")
    await rbac.members.assign(test_user, role)
    await rbac.members.revoke(test_user, role)

    assert events == [("assigned", "Editor"), ("revoked", "Editor")]


# ============ Default role policy ============


@pytest.mark.asyncio
async def test_new_actor_gets_default_role(db, hook_manager, rbac, user_factory):
    await rbac.roles.seed_default_roles()
    install_default_role_policy(hook_manager)
    members = MembershipService(db, hooks=hook_manager)

    user = await user_factory.create()
    await members.register_actor(user)

    assert await members.role_names(user) == [settings.auth.default_role_name]


@pytest.mark.asyncio
async def test_default_role_skipped_when_actor_has_roles(db, rbac, test_user):
    await rbac.roles.seed_default_roles()
    await rbac.members.assign(test_user, "Administrator")

    assert await assign_default_role(test_user, db) is None
    assert await rbac.members.role_names(test_user) == ["Administrator"]


@pytest.mark.asyncio
async def test_default_role_missing(db, test_user):
    """Without the default role nothing is assigned and nothing raises."""
    assert await assign_default_role(test_user, db) is None


def test_default_role_policy_installed_once(hook_manager):
    install_default_role_policy(hook_manager)
    install_default_role_policy(hook_manager)

    assert hook_manager.has_handler("actor.created", assign_default_role)
    assert len(hook_manager.handlers("actor.created")) == 1
