"""
devkeep/test_communities.py

Community membership lifecycle and community-admin rights over projects.

Run:
    pytest devkeep/test_communities.py -v
"""

from devkeep.db import db_session, now_iso


def create_community(client, owner, name="Builders"):
    response = client.post("/api/communities", json={"name": name}, headers=owner["headers"])
    assert response.status_code == 201, response.text
    return response.json()["id"]


def invite(client, admin, community_id, email, role="member"):
    return client.post(
        f"/api/communities/{community_id}/members",
        json={"email": email, "role": role},
        headers=admin["headers"],
    )


def member_row(community_id, user_id):
    with db_session() as conn:
        row = conn.execute(
            "SELECT role, accepted FROM community_members WHERE community_id = ? AND user_id = ?",
            (community_id, user_id),
        ).fetchone()
    return dict(row) if row else None


class TestCommunityInvitations:
    def test_owner_is_recorded_as_accepted_admin(self, client, make_user):
        owner = make_user("owner")
        community_id = create_community(client, owner)

        assert member_row(community_id, owner["id"]) == {"role": "admin", "accepted": 1}
        detail = client.get(f"/api/communities/{community_id}", headers=owner["headers"]).json()
        assert detail["access"]["relationship"] == "owner"

    def test_pending_member_is_listed_separately_and_kept_out_of_chat(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)

        response = invite(client, owner, community_id, bob["email"])
        assert response.status_code == 200
        pending_entry = [m for m in response.json()["members"] if m["user_id"] == bob["id"]][0]
        assert pending_entry["accepted"] is False

        listing = client.get("/api/communities", headers=bob["headers"]).json()
        assert listing["communities"] == []
        assert [c["id"] for c in listing["pending_invitations"]] == [community_id]

        assert client.get(f"/api/communities/{community_id}/messages", headers=bob["headers"]).status_code == 403
        posted = client.post(
            f"/api/communities/{community_id}/messages", json={"content": "hi"}, headers=bob["headers"]
        )
        assert posted.status_code == 403
        assert client.get(f"/api/communities/{community_id}", headers=bob["headers"]).status_code == 403

    def test_accept_grants_membership(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, bob["email"])

        accepted = client.post(f"/api/communities/{community_id}/accept", headers=bob["headers"])
        assert accepted.status_code == 200
        assert member_row(community_id, bob["id"])["accepted"] == 1

        listing = client.get("/api/communities", headers=bob["headers"]).json()
        assert [c["id"] for c in listing["communities"]] == [community_id]
        assert listing["pending_invitations"] == []

        posted = client.post(
            f"/api/communities/{community_id}/messages", json={"content": "hello all"}, headers=bob["headers"]
        )
        assert posted.status_code == 201

        again = client.post(f"/api/communities/{community_id}/accept", headers=bob["headers"])
        assert again.status_code == 404
        assert again.json()["code"] == "invitation_already_resolved"

    def test_decline_then_accept_fails(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, bob["email"])

        assert client.delete(f"/api/communities/{community_id}/accept", headers=bob["headers"]).status_code == 200
        assert member_row(community_id, bob["id"]) is None

        response = client.post(f"/api/communities/{community_id}/accept", headers=bob["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "invitation_not_found"

    def test_duplicate_invite_and_owner_invite_rejected(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)

        assert invite(client, owner, community_id, bob["email"]).status_code == 200
        duplicate = invite(client, owner, community_id, bob["email"])
        assert duplicate.status_code == 400
        assert duplicate.json()["code"] == "already_invited"

        self_invite = invite(client, owner, community_id, owner["email"])
        assert self_invite.status_code == 400

    def test_only_admins_invite(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        carol = make_user("carol")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, bob["email"])
        client.post(f"/api/communities/{community_id}/accept", headers=bob["headers"])

        response = invite(client, bob, community_id, carol["email"])
        assert response.status_code == 403

    def test_pending_admin_cannot_invite(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        carol = make_user("carol")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, bob["email"], role="admin")

        assert invite(client, bob, community_id, carol["email"]).status_code == 403

    def test_legacy_member_can_chat(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        with db_session() as conn:
            conn.execute(
                """
                INSERT INTO community_members (community_id, user_id, role, joined_at, accepted)
                VALUES (?, ?, 'member', ?, NULL)
                """,
                (community_id, bob["id"], now_iso()),
            )
            conn.commit()

        posted = client.post(
            f"/api/communities/{community_id}/messages", json={"content": "from before"}, headers=bob["headers"]
        )
        assert posted.status_code == 201
        messages = client.get(f"/api/communities/{community_id}/messages", headers=bob["headers"]).json()
        assert [m["content"] for m in messages["messages"]] == ["from before"]

        listing = client.get("/api/communities", headers=bob["headers"]).json()
        assert [c["id"] for c in listing["communities"]] == [community_id]
        assert listing["pending_invitations"] == []


class TestMemberManagement:
    def test_owner_cannot_be_removed(self, client, make_user):
        owner = make_user("owner")
        community_id = create_community(client, owner)

        response = client.delete(
            f"/api/communities/{community_id}/members",
            params={"member_id": owner["id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 400

    def test_member_cannot_remove_others_but_can_leave(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        carol = make_user("carol")
        community_id = create_community(client, owner)
        for user in (bob, carol):
            invite(client, owner, community_id, user["email"])
            client.post(f"/api/communities/{community_id}/accept", headers=user["headers"])

        denied = client.delete(
            f"/api/communities/{community_id}/members", params={"member_id": carol["id"]}, headers=bob["headers"]
        )
        assert denied.status_code == 403
        assert member_row(community_id, carol["id"]) is not None

        left = client.delete(
            f"/api/communities/{community_id}/members", params={"member_id": bob["id"]}, headers=bob["headers"]
        )
        assert left.status_code == 200
        assert member_row(community_id, bob["id"]) is None

    def test_admin_changes_roles(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, bob["email"])
        client.post(f"/api/communities/{community_id}/accept", headers=bob["headers"])

        denied = client.patch(
            f"/api/communities/{community_id}/members",
            json={"member_id": bob["id"], "role": "admin"},
            headers=bob["headers"],
        )
        assert denied.status_code == 403

        promoted = client.patch(
            f"/api/communities/{community_id}/members",
            json={"member_id": bob["id"], "role": "admin"},
            headers=owner["headers"],
        )
        assert promoted.status_code == 200
        assert member_row(community_id, bob["id"])["role"] == "admin"

        missing = client.patch(
            f"/api/communities/{community_id}/members",
            json={"member_id": 9999, "role": "member"},
            headers=owner["headers"],
        )
        assert missing.status_code == 404

    def test_invalid_role_is_rejected(self, client, make_user):
        owner = make_user("owner")
        bob = make_user("bob")
        community_id = create_community(client, owner)

        response = invite(client, owner, community_id, bob["email"], role="superuser")
        assert response.status_code == 400
        assert response.json()["code"] == "validation_failed"


class TestCommunityAdminOverProjects:
    def _setup(self, client, make_user, accept_admin=True):
        owner = make_user("owner")
        admin = make_user("admin")
        community_id = create_community(client, owner)
        invite(client, owner, community_id, admin["email"], role="admin")
        if accept_admin:
            client.post(f"/api/communities/{community_id}/accept", headers=admin["headers"])
        project = client.post(
            "/api/projects", json={"name": "Shared", "community_id": community_id}, headers=owner["headers"]
        )
        assert project.status_code == 201
        return owner, admin, project.json()["id"]

    def test_community_admin_manages_project_tasks(self, client, make_user):
        owner, admin, project_id = self._setup(client, make_user)

        created = client.post(
            f"/api/projects/{project_id}/tasks", json={"title": "Triage"}, headers=admin["headers"]
        )
        assert created.status_code == 201

        listing = client.get("/api/projects", headers=admin["headers"]).json()
        assert [p["id"] for p in listing["shared_projects"]] == [project_id]

        # Still not the owner
        assert client.delete(f"/api/projects/{project_id}", headers=admin["headers"]).status_code == 403

    def test_pending_community_admin_has_no_project_rights(self, client, make_user):
        owner, admin, project_id = self._setup(client, make_user, accept_admin=False)

        response = client.post(
            f"/api/projects/{project_id}/tasks", json={"title": "Triage"}, headers=admin["headers"]
        )
        assert response.status_code == 403
        assert client.get(f"/api/projects/{project_id}/tasks", headers=admin["headers"]).status_code == 403

    def test_linking_project_requires_membership(self, client, make_user):
        owner = make_user("owner")
        outsider = make_user("outsider")
        community_id = create_community(client, owner)

        response = client.post(
            "/api/projects", json={"name": "Sneaky", "community_id": community_id}, headers=outsider["headers"]
        )
        assert response.status_code == 403
