"""
devkeep/test_access.py

Unit tests for the access-level mapping plus relationship resolution
against a real database.

Tests:
- relationship -> level mapping for projects and communities
- NULL acceptance counts as accepted
- highest relationship wins when several apply
- pending community invitees resolve to no access

Run:
    pytest devkeep/test_access.py -v
"""

import pytest

from devkeep.access import (
    AccessLevel,
    Relationship,
    accessible_project_ids,
    community_level,
    is_accepted,
    member_community_ids,
    project_level,
    require_community_access,
    require_project_access,
    resolve_community_access,
    resolve_project_access,
)
from devkeep.auth_context import AuthContext
from devkeep.db import db_session, now_iso
from devkeep.errors import NotFound, PermissionDenied


def ctx_for(user):
    return AuthContext(user_id=user["id"], email=user["email"], name=user["name"])


def insert_project(conn, owner_id, name="Alpha", community_id=None):
    now = now_iso()
    cur = conn.execute(
        "INSERT INTO projects (user_id, name, community_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (owner_id, name, community_id, now, now),
    )
    conn.commit()
    return cur.lastrowid


def insert_community(conn, owner_id, name="Guild"):
    now = now_iso()
    cur = conn.execute(
        "INSERT INTO communities (name, owner_id, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (name, owner_id, now, now),
    )
    conn.commit()
    return cur.lastrowid


def add_collaborator(conn, project_id, email, role="Collaborator", accepted=0):
    conn.execute(
        "INSERT INTO project_collaborators (project_id, email, role, added_at, accepted) VALUES (?, ?, ?, ?, ?)",
        (project_id, email, role, now_iso(), accepted),
    )
    conn.commit()


def add_member(conn, community_id, user_id, role="member", accepted=0):
    conn.execute(
        "INSERT INTO community_members (community_id, user_id, role, joined_at, accepted) VALUES (?, ?, ?, ?, ?)",
        (community_id, user_id, role, now_iso(), accepted),
    )
    conn.commit()


class TestLevelMapping:
    @pytest.mark.parametrize(
        "relationship,role,expected",
        [
            (Relationship.OWNER, None, AccessLevel.OWNER),
            (Relationship.COMMUNITY_ADMIN, None, AccessLevel.MANAGE),
            (Relationship.COLLABORATOR, "Project Lead", AccessLevel.MANAGE),
            (Relationship.COLLABORATOR, "Admin", AccessLevel.MANAGE),
            (Relationship.COLLABORATOR, "Collaborator", AccessLevel.MEMBER),
            (Relationship.PENDING, "Project Lead", AccessLevel.READ),
            (Relationship.NONE, None, AccessLevel.NONE),
        ],
    )
    def test_project_levels(self, relationship, role, expected):
        assert project_level(relationship, role) == expected

    @pytest.mark.parametrize(
        "relationship,expected",
        [
            (Relationship.OWNER, AccessLevel.OWNER),
            (Relationship.ADMIN, AccessLevel.MANAGE),
            (Relationship.MEMBER, AccessLevel.MEMBER),
            (Relationship.PENDING, AccessLevel.NONE),
            (Relationship.NONE, AccessLevel.NONE),
        ],
    )
    def test_community_levels(self, relationship, expected):
        assert community_level(relationship) == expected

    def test_acceptance_flag(self):
        assert is_accepted(None) is True
        assert is_accepted(1) is True
        assert is_accepted(0) is False
        assert is_accepted(False) is False


class TestProjectResolution:
    def test_owner_and_stranger(self, make_user):
        owner = make_user("owner")
        stranger = make_user("stranger")
        with db_session() as conn:
            project_id = insert_project(conn, owner["id"])
            assert resolve_project_access(conn, project_id, ctx_for(owner)).relationship == Relationship.OWNER
            access = resolve_project_access(conn, project_id, ctx_for(stranger))
            assert access.relationship == Relationship.NONE
            with pytest.raises(PermissionDenied):
                require_project_access(conn, project_id, ctx_for(stranger))

    def test_missing_project_is_not_found(self, make_user):
        user = make_user("someone")
        with db_session() as conn:
            with pytest.raises(NotFound):
                resolve_project_access(conn, 4242, ctx_for(user))

    def test_pending_lead_only_reads(self, make_user):
        owner = make_user("owner")
        lead = make_user("lead")
        with db_session() as conn:
            project_id = insert_project(conn, owner["id"])
            add_collaborator(conn, project_id, lead["email"], role="Project Lead", accepted=0)

            access = require_project_access(conn, project_id, ctx_for(lead), AccessLevel.READ)
            assert access.relationship == Relationship.PENDING
            with pytest.raises(PermissionDenied):
                require_project_access(conn, project_id, ctx_for(lead), AccessLevel.MEMBER)
            assert accessible_project_ids(conn, ctx_for(lead)) == []

    def test_legacy_collaborator_is_accepted(self, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        with db_session() as conn:
            project_id = insert_project(conn, owner["id"])
            add_collaborator(conn, project_id, bob["email"], accepted=None)

            access = resolve_project_access(conn, project_id, ctx_for(bob))
            assert access.relationship == Relationship.COLLABORATOR
            assert access.level == AccessLevel.MEMBER
            assert accessible_project_ids(conn, ctx_for(bob)) == [project_id]

    def test_highest_relationship_wins(self, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        with db_session() as conn:
            community_id = insert_community(conn, owner["id"])
            add_member(conn, community_id, bob["id"], role="admin", accepted=1)
            project_id = insert_project(conn, owner["id"], community_id=community_id)
            add_collaborator(conn, project_id, bob["email"], role="Collaborator", accepted=1)

            access = resolve_project_access(conn, project_id, ctx_for(bob))
            assert access.relationship == Relationship.COMMUNITY_ADMIN
            assert access.level == AccessLevel.MANAGE


class TestCommunityResolution:
    def test_pending_member_has_no_access(self, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        with db_session() as conn:
            community_id = insert_community(conn, owner["id"])
            add_member(conn, community_id, bob["id"], role="admin", accepted=0)

            access = resolve_community_access(conn, community_id, ctx_for(bob))
            assert access.pending is True
            assert access.is_member is False
            assert access.is_admin is False
            with pytest.raises(PermissionDenied):
                require_community_access(conn, community_id, ctx_for(bob))
            assert member_community_ids(conn, ctx_for(bob)) == []

    def test_accepted_admin_and_legacy_member(self, make_user):
        owner = make_user("owner")
        admin = make_user("admin")
        legacy = make_user("legacy")
        with db_session() as conn:
            community_id = insert_community(conn, owner["id"])
            add_member(conn, community_id, admin["id"], role="admin", accepted=1)
            add_member(conn, community_id, legacy["id"], role="member", accepted=None)

            admin_access = require_community_access(conn, community_id, ctx_for(admin), AccessLevel.MANAGE)
            assert admin_access.is_admin is True
            legacy_access = require_community_access(conn, community_id, ctx_for(legacy))
            assert legacy_access.relationship == Relationship.MEMBER
            with pytest.raises(PermissionDenied):
                require_community_access(conn, community_id, ctx_for(legacy), AccessLevel.MANAGE)

    def test_owner_always_passes(self, make_user):
        owner = make_user("owner")
        with db_session() as conn:
            community_id = insert_community(conn, owner["id"])
            access = require_community_access(conn, community_id, ctx_for(owner), AccessLevel.OWNER)
            assert access.is_owner is True
            assert member_community_ids(conn, ctx_for(owner)) == [community_id]
