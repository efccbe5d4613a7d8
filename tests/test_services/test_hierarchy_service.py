"""
Unit tests for the hierarchy service.

Run from the project root with::

    pytest tests/test_services/test_hierarchy_service.py -v
"""

import pytest

from orgtree.errors import InvalidEndpoint
from orgtree.models.audit import AuditLog
from orgtree.services import audit_service, hierarchy_service, node_service


class TestCreateHierarchy:
    """Tests for hierarchy definitions."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        self.app = app
        self.session = db_session

    def test_default_max_depth_comes_from_config(self):
        hierarchy = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")

        assert hierarchy.max_depth == self.app.config["HIERARCHY_DEFAULT_MAX_DEPTH"]
        assert hierarchy.is_active is True

    def test_max_depth_bounds(self):
        for max_depth in (0, 51):
            with pytest.raises(ValueError):
                hierarchy_service.create_hierarchy(
                    organization_id=1, name="Corporate", max_depth=max_depth
                )

        assert hierarchy_service.create_hierarchy(
            organization_id=1, name="Flat", max_depth=1
        ).max_depth == 1

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            hierarchy_service.create_hierarchy(
                organization_id=1, name="Corporate", hierarchy_type="galactic"
            )

    def test_listing_is_scoped_to_organization(self):
        hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")
        hierarchy_service.create_hierarchy(organization_id=2, name="Partner")

        names = [h.name for h in hierarchy_service.find_hierarchies_by_organization(1)]

        assert names == ["Corporate"]

    def test_organizational_hierarchy_lookup(self):
        hierarchy_service.create_hierarchy(
            organization_id=1, name="Reporting", hierarchy_type="reporting"
        )
        corporate = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")

        assert hierarchy_service.get_organizational_hierarchy(1).id == corporate.id
        assert hierarchy_service.get_organizational_hierarchy(2) is None

    def test_creation_is_audited(self):
        hierarchy = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")

        history = audit_service.get_entity_history("hierarchy_definition", hierarchy.id)

        assert [entry.action_type for entry in history] == ["CREATE"]

    def test_missing_hierarchy(self):
        assert hierarchy_service.get_hierarchy(9999) is None
        with pytest.raises(InvalidEndpoint):
            hierarchy_service.get_hierarchy_or_raise(9999)


class TestAuditHierarchy:
    """Tests for the whole-tree audit."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        self.session = db_session
        self.hierarchy = hierarchy_service.create_hierarchy(
            organization_id=1, name="Corporate", max_depth=4
        )
        hid = self.hierarchy.id
        self.company = node_service.create_node(hid, "Company")
        self.engineering = node_service.create_node(
            hid, "Engineering", parent_id=self.company.id
        )
        self.platform = node_service.create_node(
            hid, "Platform", parent_id=self.engineering.id
        )

    def test_clean_tree_passes(self):
        result = hierarchy_service.audit_hierarchy(self.hierarchy.id)

        assert result.is_valid
        assert result.summary["nodes_checked"] == 3
        assert result.summary["deepest_level"] == 2

    def test_drifted_level_is_tagged_with_node(self):
        self.platform.level = 3
        self.session.commit()

        result = hierarchy_service.audit_hierarchy(self.hierarchy.id)

        assert result.issue_types() == ["LEVEL_INCONSISTENCY"]
        assert result.issues[0].details["node_id"] == self.platform.id

    def test_active_node_under_inactive_parent_is_orphaned(self):
        self.engineering.is_active = False
        self.session.commit()

        result = hierarchy_service.audit_hierarchy(self.hierarchy.id)

        assert "ORPHANED_NODE" in result.issue_types()

    def test_depth_overrun_is_a_warning(self):
        """A shrunken max_depth leaves existing deep nodes flagged, not moved."""
        self.hierarchy.max_depth = 1
        self.session.commit()

        result = hierarchy_service.audit_hierarchy(self.hierarchy.id)

        assert [w.type for w in result.warnings] == ["DEPTH_EXCEEDED"]

    def test_audit_writes_nothing(self):
        before = AuditLog.query.count()

        hierarchy_service.audit_hierarchy(self.hierarchy.id)

        assert AuditLog.query.count() == before

    def test_max_depth_in_use(self):
        assert hierarchy_service.get_max_depth_in_use(self.hierarchy.id) == 2

    def test_missing_hierarchy_is_a_finding(self):
        result = hierarchy_service.audit_hierarchy(9999)

        assert result.issue_types() == ["INVALID_ENDPOINT"]
        assert result.summary["nodes_checked"] == 0
