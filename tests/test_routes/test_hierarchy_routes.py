"""
Tests for the hierarchy blueprint API.

Checks authentication and permission gating, and that domain errors
from the services reach the caller as JSON with their error code and
HTTP status.
"""

import pytest

from orgtree.services import hierarchy_service, node_service

NODE_EDITOR = (
    "hierarchy_definition:create",
    "hierarchy_definition:update",
    "hierarchy_node:create",
    "hierarchy_node:move",
    "hierarchy_node:claim",
    "hierarchy_relationship:create",
    "hierarchy_relationship:delete",
)


class TestAccessControl:
    """Anonymous and under-privileged callers are turned away."""

    def test_anonymous_request_is_unauthorized(self, client):
        response = client.get("/api/hierarchies")

        assert response.status_code == 401
        assert response.get_json()["error"] == "UNAUTHORIZED"

    def test_missing_permission_is_forbidden(self, login_client):
        client = login_client("hierarchy_node:create")

        response = client.post("/api/hierarchies", json={"name": "Corporate"})

        assert response.status_code == 403
        assert response.get_json()["error"] == "FORBIDDEN"

    def test_reads_need_only_sign_in(self, login_client):
        client = login_client()

        response = client.get("/api/hierarchies")

        assert response.status_code == 200
        assert response.get_json() == {"hierarchies": []}


class TestHierarchyApi:
    """End-to-end flows through the JSON API."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session, login_client):
        self.session = db_session
        self.client = login_client(*NODE_EDITOR)
        response = self.client.post(
            "/api/hierarchies", json={"name": "Corporate", "max_depth": 2}
        )
        assert response.status_code == 201
        self.hierarchy_id = response.get_json()["id"]

    def _create_node(self, name, parent_id=None, **fields):
        return self.client.post(
            "/api/nodes",
            json={
                "hierarchy_id": self.hierarchy_id,
                "name": name,
                "parent_id": parent_id,
                **fields,
            },
        )

    def test_node_tree_round_trip(self):
        company = self._create_node("Company").get_json()
        team = self._create_node("Platform", parent_id=company["id"]).get_json()

        assert team["level"] == 1
        assert team["materialized_path"] == f"{company['id']}/{team['id']}"

        path = self.client.get(f"/api/nodes/{team['id']}/path").get_json()
        assert path["path"] == "Company > Platform"

        ancestors = self.client.get(f"/api/nodes/{team['id']}/ancestors").get_json()
        assert [n["id"] for n in ancestors["nodes"]] == [company["id"]]

    def test_depth_exceeded_is_422(self):
        parent_id = None
        for name in ("L0", "L1", "L2"):
            parent_id = self._create_node(name, parent_id=parent_id).get_json()["id"]

        response = self._create_node("L3", parent_id=parent_id)

        assert response.status_code == 422
        assert response.get_json()["error"] == "DEPTH_EXCEEDED"

    def test_missing_fields_are_400(self):
        response = self.client.post("/api/nodes", json={"name": "Orphan"})

        assert response.status_code == 400
        assert response.get_json()["error"] == "BAD_REQUEST"

    def test_unknown_node_is_404(self):
        response = self.client.get("/api/nodes/9999")

        assert response.status_code == 404
        assert response.get_json()["error"] == "INVALID_ENDPOINT"

    def test_circular_move_is_409(self):
        parent = self._create_node("Company").get_json()
        child = self._create_node("Team", parent_id=parent["id"]).get_json()

        response = self.client.post(
            f"/api/nodes/{parent['id']}/move", json={"parent_id": child["id"]}
        )

        assert response.status_code == 409
        assert response.get_json()["error"] == "CIRCULAR_REFERENCE"

    def test_move_to_root(self):
        parent = self._create_node("Company").get_json()
        child = self._create_node("Team", parent_id=parent["id"]).get_json()

        response = self.client.post(f"/api/nodes/{child['id']}/move", json={"parent_id": None})

        assert response.status_code == 200
        assert response.get_json()["level"] == 0

    def test_invalid_relationship_type_is_422_with_issues(self):
        first = self._create_node("Director", node_type="position").get_json()
        second = self._create_node("Analyst", node_type="position").get_json()

        response = self.client.post(
            "/api/relationships",
            json={
                "parent_node_id": first["id"],
                "child_node_id": second["id"],
                "relationship_type": "geographical",
                "hierarchy_id": self.hierarchy_id,
            },
        )

        body = response.get_json()
        assert response.status_code == 422
        assert body["error"] == "INVALID_RELATIONSHIP_TYPE"
        assert body["issues"][0]["type"] == "INVALID_RELATIONSHIP_TYPE"

    def test_relationship_create_and_remove(self):
        parent = self._create_node("Company").get_json()
        child = self._create_node("Finance").get_json()

        created = self.client.post(
            "/api/relationships",
            json={
                "parent_node_id": parent["id"],
                "child_node_id": child["id"],
                "relationship_type": "hierarchical",
                "hierarchy_id": self.hierarchy_id,
            },
        )
        assert created.status_code == 201
        assert self.client.get(f"/api/nodes/{child['id']}").get_json()["level"] == 1

        removed = self.client.post(
            f"/api/relationships/{created.get_json()['id']}/remove"
        )
        assert removed.status_code == 200
        assert removed.get_json()["is_active"] is False
        assert self.client.get(f"/api/nodes/{child['id']}").get_json()["level"] == 0

    def test_claim_conflict_is_409(self, make_user):
        node = self._create_node("Desk", node_type="position").get_json()
        other = make_user()

        first = self.client.post(f"/api/nodes/{node['id']}/claim", json={"user_id": other.id})
        second = self.client.post(f"/api/nodes/{node['id']}/claim")

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.get_json()["error"] == "NODE_ALREADY_CLAIMED"

    def test_audit_and_integrity_reports(self):
        company = self._create_node("Company").get_json()
        self._create_node("Team", parent_id=company["id"])

        audit = self.client.get(f"/api/hierarchies/{self.hierarchy_id}/audit").get_json()
        integrity = self.client.get(
            f"/api/hierarchies/{self.hierarchy_id}/integrity"
        ).get_json()

        assert audit["is_valid"] is True
        assert audit["nodes_checked"] == 2
        assert integrity["is_valid"] is True

    def test_rebuild_paths(self):
        company = node_service.create_node(self.hierarchy_id, "Company")
        company.level = 5
        self.session.commit()

        response = self.client.post(f"/api/hierarchies/{self.hierarchy_id}/rebuild-paths")

        assert response.get_json()["rebuilt_nodes"] == 1
        assert hierarchy_service.audit_hierarchy(self.hierarchy_id).is_valid
