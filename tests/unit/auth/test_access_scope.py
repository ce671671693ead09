from __future__ import annotations

import pytest

from upkeep.auth.access_scope import AccessScope, AccessScopeResolver
from upkeep.core.enums import UserRole
from upkeep.core.exceptions import AccessDeniedError, AuthenticationError
from upkeep.services.branch_directory import BranchDirectory


def test_admins_are_unrestricted_within_their_tenant(session, world, scope_for):
    scope = scope_for(world.admin)
    assert scope.unrestricted is True
    assert scope.tenant_id == world.acme.id
    assert scope.signature() == f"t{world.acme.id}:all"

    resolver = AccessScopeResolver(session)
    assert resolver.can_access_branch(scope, world.south.id)
    assert not resolver.can_access_branch(scope, world.foreign.id)


def test_branch_roles_see_assigned_branches_only(session, world, scope_for):
    scope = scope_for(world.manager)
    assert scope.unrestricted is False
    assert scope.branch_ids == frozenset({world.north.id})
    assert scope.signature() == f"t{world.acme.id}:b{world.north.id}"

    resolver = AccessScopeResolver(session)
    resolver.assert_branch_access(scope, world.north.id)
    with pytest.raises(AccessDeniedError):
        resolver.assert_branch_access(scope, world.south.id)


def test_branch_assignment_change_is_visible_on_next_resolve(session, world, scope_for):
    directory = BranchDirectory(session)
    directory.assign_user_to_branch(world.manager.id, world.south.id)
    session.commit()
    assert scope_for(world.manager).branch_ids == frozenset({world.north.id, world.south.id})

    assert directory.remove_user_from_branch(world.manager.id, world.north.id) is True
    session.commit()
    assert scope_for(world.manager).branch_ids == frozenset({world.south.id})


def test_inactive_branch_drops_out_of_scope(session, world, scope_for):
    world.north.is_active = False
    session.commit()
    scope = scope_for(world.manager)
    assert scope.branch_ids == frozenset()
    assert scope.signature().endswith(":bnone")


def test_inactive_user_cannot_resolve(session, world, scope_for):
    world.viewer.is_active = False
    session.commit()
    with pytest.raises(AuthenticationError):
        scope_for(world.viewer)


def test_tenant_override_is_super_admin_only(world, scope_for):
    with pytest.raises(AccessDeniedError):
        scope_for(world.admin, acting_tenant_id=world.globex.id)

    scope = scope_for(world.super_admin, acting_tenant_id=world.globex.id)
    assert scope.tenant_id == world.globex.id
    assert scope.unrestricted is True


def test_resolve_user_id_requires_existing_user(session, world):
    resolver = AccessScopeResolver(session)
    assert resolver.resolve_user_id(world.viewer.id, world.acme.id).role is UserRole.VIEWER
    with pytest.raises(AuthenticationError):
        resolver.resolve_user_id(world.viewer.id, world.globex.id)


def test_technician_must_be_assigned_to_branch(session, world):
    resolver = AccessScopeResolver(session)
    assert resolver.assert_technician_for_branch(world.tech.id, world.acme.id, world.north.id).id == world.tech.id
    with pytest.raises(AccessDeniedError):
        resolver.assert_technician_for_branch(world.tech.id, world.acme.id, world.south.id)
    with pytest.raises(AccessDeniedError, match="not a technician"):
        resolver.assert_technician_for_branch(world.manager.id, world.acme.id, world.north.id)


def test_system_scope_is_tenant_wide():
    scope = AccessScope.system(7)
    assert scope.user_id is None
    assert scope.allows_branch(123)
    assert scope.signature() == "t7:all"
