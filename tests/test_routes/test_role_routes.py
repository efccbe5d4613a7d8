"""
Tests for the roles blueprint API.
"""

import pytest

from orgtree.services import permission_service, role_service

ROLE_ADMIN = (
    "role:create",
    "role:update",
    "role:activate",
    "role:deactivate",
    "permission:create",
)


class TestRoleApi:
    """Role lifecycle and permission queries through the JSON API."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session, login_client):
        self.session = db_session
        self.client = login_client(*ROLE_ADMIN)

    def _create_role(self, name, **fields):
        return self.client.post("/api/roles", json={"name": name, **fields})

    def test_create_role(self):
        response = self._create_role("Editor", priority=300)

        body = response.get_json()
        assert response.status_code == 201
        assert body["name"] == "Editor"
        assert body["priority"] == 300
        assert body["is_active"] is True

    def test_duplicate_name_is_409(self):
        self._create_role("Editor")

        response = self._create_role("Editor")

        assert response.status_code == 409
        assert response.get_json()["error"] == "DUPLICATE_ROLE_NAME"

    def test_config_errors_are_422(self):
        response = self._create_role("Manager", role_type="hierarchical")

        assert response.status_code == 422
        assert response.get_json()["error"] == "MISSING_INHERITANCE_RULES"

    def test_check_applies_deny_override(self):
        role_id = self._create_role("Editor").get_json()["id"]
        for effect, priority in (("allow", 900), ("deny", 10)):
            response = self.client.post(
                f"/api/roles/{role_id}/permissions",
                json={
                    "resource_type": "employee",
                    "action": "read",
                    "effect": effect,
                    "priority": priority,
                },
            )
            assert response.status_code == 201

        check = self.client.get(
            f"/api/roles/{role_id}/check?action=read&resource_type=employee"
        ).get_json()
        effective = self.client.get(f"/api/roles/{role_id}/effective-permissions").get_json()

        assert check["allowed"] is False
        assert effective["permissions"]["employee:read"]["effect"] == "allow"

    def test_check_requires_query_parameters(self):
        role_id = self._create_role("Editor").get_json()["id"]

        response = self.client.get(f"/api/roles/{role_id}/check?action=read")

        assert response.status_code == 400

    def test_system_role_cannot_be_deactivated(self):
        role = role_service.create_role(organization_id=1, name="Root", is_system=True)

        response = self.client.post(f"/api/roles/{role.id}/deactivate")

        assert response.status_code == 403
        assert response.get_json()["error"] == "SYSTEM_ROLE_IMMUTABLE"

    def test_clone_and_bulk_deactivate(self):
        role_id = self._create_role(
            "Editor", permissions=[{"resource_type": "employee", "action": "read"}]
        ).get_json()["id"]

        clone = self.client.post(f"/api/roles/{role_id}/clone", json={})
        assert clone.status_code == 201
        clone_id = clone.get_json()["id"]
        assert clone.get_json()["name"] == "Editor (Copy)"
        assert permission_service.has_permission(clone_id, "read", "employee")

        response = self.client.post(
            "/api/roles/bulk-deactivate", json={"role_ids": [role_id, clone_id]}
        )
        assert response.get_json() == {"deactivated": 2}

    def test_update_role(self):
        role_id = self._create_role("Editor").get_json()["id"]

        response = self.client.patch(
            f"/api/roles/{role_id}", json={"description": "Edits records"}
        )

        assert response.status_code == 200
        assert role_service.get_role(role_id).description == "Edits records"

    def test_unexpected_body_fields_are_400(self):
        role_id = self._create_role("Editor").get_json()["id"]

        update = self.client.patch(f"/api/roles/{role_id}", json={"user_id": 7})
        clone = self.client.post(f"/api/roles/{role_id}/clone", json={"user_id": 7})

        assert update.status_code == 400
        assert clone.status_code == 400
        assert update.get_json()["error"] == "BAD_REQUEST"

    def test_evaluate_resolves_for_the_caller(self):
        response = self.client.get("/api/roles/evaluate?action=create&resource_type=role")
        missing = self.client.get("/api/roles/evaluate?action=create")

        body = response.get_json()
        assert body["allowed"] is True
        assert body["reason"] == "Explicitly allowed"
        assert body["permission"]["action"] == "create"
        assert missing.status_code == 400

    def test_conflicts_endpoint(self):
        role_id = self._create_role("Editor").get_json()["id"]
        allow = permission_service.add_permission(role_id, "employee", "read")
        permission_service.add_permission(role_id, "employee", "read", effect="deny")

        response = self.client.get(f"/api/roles/permissions/{allow.id}/conflicts")

        assert [c["type"] for c in response.get_json()["conflicts"]] == ["EFFECT_CONFLICT"]

    def test_forbidden_without_role_permission(self, login_client):
        reader = login_client()

        response = reader.post("/api/roles", json={"name": "Sneaky"})

        assert response.status_code == 403
