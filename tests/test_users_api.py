"""
Tests for user administration and roles.
"""

from irb_portal.auth.models import RoleName
from irb_portal.core.cache import DASHBOARD_PREFIX, STUDIES_PREFIX, get_cache
from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import AuditLog, User

from conftest import PASSWORD, auth_headers, create_study, create_user


class TestUserAdministration:
    """Admin-only account management."""

    def test_list_users(self, client, admin, pi, researcher):
        body = client.get("/api/users", headers=auth_headers(admin)).json()
        assert body["pagination"]["total"] == 3

        body = client.get("/api/users?role=principal_investigator", headers=auth_headers(admin)).json()
        assert [u["id"] for u in body["users"]] == [pi.id]

    def test_list_pending(self, client, db, admin):
        pending = create_user(db, RoleName.RESEARCHER, is_approved=False)
        body = client.get("/api/users?is_approved=false", headers=auth_headers(admin)).json()
        assert [u["id"] for u in body["users"]] == [pending.id]

    def test_non_admin_is_forbidden(self, client, pi):
        response = client.get("/api/users", headers=auth_headers(pi))
        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_ERROR"

    def test_create_user(self, client, db, admin):
        response = client.post("/api/users", headers=auth_headers(admin), json={
            "email": "reviewer2@example.org", "password": PASSWORD,
            "first_name": "Rita", "last_name": "Reviewer", "role": "reviewer",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["role"] == "reviewer"
        assert body["is_approved"] is True

        db.expire_all()
        entry = db.query(AuditLog).filter_by(action="CREATE_USER").one()
        assert entry.user_id == admin.id

    def test_create_duplicate_email(self, client, admin, pi):
        response = client.post("/api/users", headers=auth_headers(admin), json={
            "email": pi.email, "password": PASSWORD, "first_name": "Dup", "last_name": "User",
        })
        assert response.status_code == 409

    def test_get_missing_user(self, client, admin):
        assert client.get("/api/users/nobody", headers=auth_headers(admin)).status_code == 404

    def test_change_role(self, client, db, admin, researcher):
        response = client.put(f"/api/users/{researcher.id}", json={"role": "principal_investigator"},
                              headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["role"] == "principal_investigator"

        db.expire_all()
        entry = db.query(AuditLog).filter_by(action="UPDATE_USER").one()
        assert entry.details["changes"]["role"] == {"old": "researcher", "new": "principal_investigator"}

    def test_cannot_deactivate_self(self, client, admin):
        response = client.put(f"/api/users/{admin.id}", json={"is_active": False}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert client.delete(f"/api/users/{admin.id}", headers=auth_headers(admin)).status_code == 400

    def test_deactivated_user_loses_access(self, client, db, admin, researcher):
        headers = auth_headers(researcher)
        assert client.get("/api/auth/me", headers=headers).status_code == 200

        assert client.delete(f"/api/users/{researcher.id}", headers=auth_headers(admin)).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

        db.expire_all()
        assert db.get(User, researcher.id).is_active is False

    def test_approve_user(self, client, db, admin):
        pending = create_user(db, RoleName.RESEARCHER, is_approved=False)
        response = client.post(f"/api/users/{pending.id}/approve", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["is_approved"] is True

        # Approving twice does not write a second entry
        client.post(f"/api/users/{pending.id}/approve", headers=auth_headers(admin))
        db.expire_all()
        assert db.query(AuditLog).filter_by(action="APPROVE_USER").count() == 1


class TestCoordinatorsAndRoles:
    def test_available_coordinators(self, client, db, pi, coordinator):
        create_user(db, RoleName.COORDINATOR, is_active=False)
        body = client.get("/api/users/coordinators", headers=auth_headers(pi)).json()
        assert [c["id"] for c in body] == [coordinator.id]

    def test_reviewer_cannot_list_coordinators(self, client, reviewer):
        assert client.get("/api/users/coordinators", headers=auth_headers(reviewer)).status_code == 403

    def test_roles(self, client, admin):
        body = client.get("/api/roles", headers=auth_headers(admin)).json()
        roles = {r["name"]: r for r in body}
        assert set(roles) == {role.value for role in RoleName}
        assert "manage_users" in roles["admin"]["permissions"]
        assert "manage_users" not in roles["researcher"]["permissions"]


class TestAccessChangesRefreshLists:
    """Role and status changes take effect on cached study lists immediately."""

    def test_demoted_reviewer_loses_submitted_studies(self, client, db, admin, pi, reviewer):
        create_study(db, pi, status=StudyStatus.SUBMITTED)
        headers = auth_headers(reviewer)
        assert client.get("/api/studies", headers=headers).json()["pagination"]["total"] == 1
        assert client.get("/api/dashboard/stats", headers=headers).json()["pending_reviews"] == 1

        response = client.put(f"/api/users/{reviewer.id}", json={"role": "researcher"},
                              headers=auth_headers(admin))
        assert response.status_code == 200

        assert client.get("/api/studies", headers=headers).json()["pagination"]["total"] == 0
        assert client.get("/api/dashboard/stats", headers=headers).json()["pending_reviews"] == 0

    def test_approval_refreshes_pending_user_cache(self, client, db, admin):
        cache = get_cache()
        pending = create_user(db, RoleName.RESEARCHER, is_approved=False)
        cache.set(f"{STUDIES_PREFIX}{pending.id}:stale", "stale")
        cache.set(f"{DASHBOARD_PREFIX}{pending.id}", "stale")
        cache.set(f"{STUDIES_PREFIX}{admin.id}:kept", "kept")

        client.post(f"/api/users/{pending.id}/approve", headers=auth_headers(admin))

        assert cache.get(f"{STUDIES_PREFIX}{pending.id}:stale") is None
        assert cache.get(f"{DASHBOARD_PREFIX}{pending.id}") is None
        assert cache.get(f"{STUDIES_PREFIX}{admin.id}:kept") == "kept"

    def test_deactivation_clears_user_cache(self, client, admin, researcher):
        cache = get_cache()
        cache.set(f"{STUDIES_PREFIX}{researcher.id}:page", "stale")
        client.delete(f"/api/users/{researcher.id}", headers=auth_headers(admin))
        assert cache.get(f"{STUDIES_PREFIX}{researcher.id}:page") is None
