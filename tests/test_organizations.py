"""
Organization API tests: CRUD, slug rules, invitations and member management.
"""

from app.models.auth import OrganizationMember
from app.models.project import ProjectAccess
from app.models.scheduling import EmailLog


# ═════════════════════════════════════════════════════════════════════════════
# Organizations
# ═════════════════════════════════════════════════════════════════════════════


class TestOrganizationCrud:
    def test_create_makes_creator_owner(self, client, owner, owner_headers):
        res = client.post("/api/v1/organizations", headers=owner_headers,
                          json={"name": "Summit Construction", "slug": "summit-co"})
        assert res.status_code == 201
        org_id = res.get_json()["data"]["id"]
        member = OrganizationMember.query.filter_by(organization_id=org_id, user_id=owner.id).one()
        assert member.role == "owner"
        assert member.joined_at is not None

    def test_slug_rules(self, client, owner_headers):
        res = client.post("/api/v1/organizations", headers=owner_headers,
                          json={"name": "Bad Slug", "slug": "Bad_Slug!"})
        assert res.status_code == 422
        assert "slug" in res.get_json()["field_errors"]

        res = client.post("/api/v1/organizations", headers=owner_headers,
                          json={"name": "Edge", "slug": "-edge-"})
        assert res.status_code == 422
        assert res.get_json()["field_errors"]["slug"] == ["Slug cannot start or end with a hyphen"]

    def test_duplicate_slug(self, client, org, owner_headers):
        res = client.post("/api/v1/organizations", headers=owner_headers,
                          json={"name": "Another Acme", "slug": "acme-builders"})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Organization slug is already in use"

    def test_list_and_get(self, client, org, owner_headers):
        res = client.get("/api/v1/organizations", headers=owner_headers)
        assert [o["slug"] for o in res.get_json()["data"]] == ["acme-builders"]

        res = client.get(f"/api/v1/organizations/{org.id}", headers=owner_headers)
        data = res.get_json()["data"]
        assert data["role"] == "owner"
        assert data["member_count"] == 1

    def test_non_member_sees_not_found(self, client, org, make_user, auth_headers):
        outsider = make_user("outsider@example.com")
        res = client.get(f"/api/v1/organizations/{org.id}", headers=auth_headers(outsider))
        assert res.status_code == 404
        assert res.get_json()["error"] == "Organization not found"

    def test_update_requires_admin(self, client, org, project, make_user, add_member, auth_headers):
        member = add_member(project, make_user("crew@example.com"), "supervisor")
        res = client.patch(f"/api/v1/organizations/{org.id}", headers=auth_headers(member),
                           json={"name": "Renamed"})
        assert res.status_code == 403
        assert res.get_json()["error"] == "Organization admin access required"

    def test_only_owner_deletes(self, client, org, owner_headers):
        res = client.delete(f"/api/v1/organizations/{org.id}", headers=owner_headers)
        assert res.status_code == 200
        res = client.get(f"/api/v1/organizations/{org.id}", headers=owner_headers)
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════════


class TestMembers:
    def test_invite_sends_email_and_stays_pending(self, client, org, make_user, owner_headers,
                                                   auth_headers):
        invitee = make_user("sub@example.com", "Sam Sub")
        res = client.post(f"/api/v1/organizations/{org.id}/members", headers=owner_headers,
                          json={"email": "sub@example.com", "role": "member"})
        assert res.status_code == 201
        assert res.get_json()["data"]["joined_at"] is None

        log = EmailLog.query.filter_by(recipient_email="sub@example.com").one()
        assert log.template_name == "organization_invite"
        assert log.status == "sent"

        # pending invites grant nothing until accepted
        res = client.get(f"/api/v1/organizations/{org.id}", headers=auth_headers(invitee))
        assert res.status_code == 404

        res = client.post(f"/api/v1/organizations/{org.id}/members/accept",
                          headers=auth_headers(invitee))
        assert res.status_code == 200
        res = client.get(f"/api/v1/organizations/{org.id}", headers=auth_headers(invitee))
        assert res.get_json()["data"]["role"] == "member"

    def test_invite_unknown_user(self, client, org, owner_headers):
        res = client.post(f"/api/v1/organizations/{org.id}/members", headers=owner_headers,
                          json={"email": "ghost@example.com"})
        assert res.status_code == 422
        assert "email" in res.get_json()["field_errors"]

    def test_invite_twice_conflicts(self, client, org, make_user, owner_headers):
        make_user("sub@example.com")
        client.post(f"/api/v1/organizations/{org.id}/members", headers=owner_headers,
                    json={"email": "sub@example.com"})
        res = client.post(f"/api/v1/organizations/{org.id}/members", headers=owner_headers,
                          json={"email": "sub@example.com"})
        assert res.status_code == 409

    def test_owner_cannot_change_own_role(self, client, org, owner, owner_headers):
        member = OrganizationMember.query.filter_by(user_id=owner.id).one()
        res = client.patch(f"/api/v1/organizations/{org.id}/members/{member.id}",
                           headers=owner_headers, json={"role": "admin"})
        assert res.status_code == 422

    def test_owner_cannot_be_removed(self, client, org, owner, owner_headers):
        member = OrganizationMember.query.filter_by(user_id=owner.id).one()
        res = client.delete(f"/api/v1/organizations/{org.id}/members/{member.id}",
                            headers=owner_headers)
        assert res.status_code == 422
        assert res.get_json()["error"] == "Cannot remove organization owner"

    def test_remove_member_drops_project_access(self, client, org, project, make_user, add_member,
                                                owner_headers):
        user = add_member(project, make_user("crew@example.com"), "supervisor")
        member = OrganizationMember.query.filter_by(user_id=user.id).one()
        res = client.delete(f"/api/v1/organizations/{org.id}/members/{member.id}",
                            headers=owner_headers)
        assert res.status_code == 200
        assert ProjectAccess.query.filter_by(user_id=user.id).count() == 0

    def test_promote_member(self, client, org, project, make_user, add_member, owner_headers,
                            auth_headers):
        user = add_member(project, make_user("crew@example.com"), "viewer")
        member = OrganizationMember.query.filter_by(user_id=user.id).one()
        res = client.patch(f"/api/v1/organizations/{org.id}/members/{member.id}",
                           headers=owner_headers, json={"role": "admin"})
        assert res.status_code == 200
        # admins get every permission on org projects
        res = client.get(f"/api/v1/projects/{project.id}/permissions", headers=auth_headers(user))
        assert "manage_team" in res.get_json()["data"]["permissions"]
