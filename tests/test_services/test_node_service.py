"""
Unit tests for the node service.

Covers cached level/path maintenance on create and reparent, the
ancestor/descendant queries, depth and cycle guards, position
validation against drifted caches, and node claims.

Run from the project root with::

    pytest tests/test_services/test_node_service.py -v
"""

import pytest

from orgtree.errors import (
    CircularReference,
    DepthExceeded,
    HierarchyIntegrityError,
    HierarchyMismatch,
    InvalidEndpoint,
    InvalidParent,
    NodeAlreadyClaimed,
    NodeHasActiveChildren,
)
from orgtree.models.audit import AuditLog
from orgtree.models.hierarchy import HierarchyRelationship
from orgtree.services import (
    audit_service,
    hierarchy_service,
    node_service,
    relationship_service,
)


def _path(*nodes):
    return "/".join(str(node.id) for node in nodes)


class TestCreateNode:
    """Tests for node creation and derived fields."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        """Create a hierarchy that allows three levels below the root."""
        self.session = db_session
        self.hierarchy = hierarchy_service.create_hierarchy(
            organization_id=1, name="Corporate", max_depth=3
        )

    def test_root_node_has_level_zero_and_own_path(self):
        """A node without a parent is a root whose path is its own id."""
        root = node_service.create_node(self.hierarchy.id, "Company")

        assert root.parent_id is None
        assert root.level == 0
        assert root.materialized_path == str(root.id)
        assert root.organization_id == 1

    def test_child_extends_parent_path(self):
        """Child level is parent level + 1 and its path extends the parent's."""
        root = node_service.create_node(self.hierarchy.id, "Company")
        child = node_service.create_node(self.hierarchy.id, "Engineering", parent_id=root.id)

        assert child.level == 1
        assert child.materialized_path == _path(root, child)
        assert child.path_ids == [root.id, child.id]

    def test_default_order_follows_last_sibling(self):
        """Siblings are numbered in creation order unless an order is given."""
        root = node_service.create_node(self.hierarchy.id, "Company")
        first = node_service.create_node(self.hierarchy.id, "A", parent_id=root.id)
        second = node_service.create_node(self.hierarchy.id, "B", parent_id=root.id)

        assert first.node_order == 1
        assert second.node_order == 2

    def test_parent_in_other_hierarchy_is_rejected(self):
        """A parent id that resolves in a different hierarchy is invalid."""
        other = hierarchy_service.create_hierarchy(organization_id=1, name="Projects")
        foreign = node_service.create_node(other.id, "Elsewhere")

        with pytest.raises(InvalidParent):
            node_service.create_node(self.hierarchy.id, "Team", parent_id=foreign.id)

    def test_missing_parent_is_rejected(self):
        with pytest.raises(InvalidParent):
            node_service.create_node(self.hierarchy.id, "Team", parent_id=9999)

    def test_missing_hierarchy_is_rejected(self):
        with pytest.raises(InvalidEndpoint):
            node_service.create_node(9999, "Company")

    def test_node_at_max_depth_is_allowed_but_not_below(self):
        """A node at level max_depth is fine; one more level raises DepthExceeded."""
        parent_id = None
        for name in ("L0", "L1", "L2", "L3"):
            node = node_service.create_node(self.hierarchy.id, name, parent_id=parent_id)
            parent_id = node.id
        assert node.level == 3

        with pytest.raises(DepthExceeded):
            node_service.create_node(self.hierarchy.id, "L4", parent_id=parent_id)

    def test_blank_name_and_unknown_type_are_rejected(self):
        with pytest.raises(ValueError):
            node_service.create_node(self.hierarchy.id, "   ")
        with pytest.raises(ValueError):
            node_service.create_node(self.hierarchy.id, "Company", node_type="galaxy")

    def test_create_is_audited(self):
        """Every created node leaves a CREATE audit entry."""
        root = node_service.create_node(self.hierarchy.id, "Company", user_id=None)

        entry = AuditLog.query.filter_by(
            entity_type="hierarchy_node", entity_id=root.id
        ).one()
        assert entry.action_type == "CREATE"


class TestTreeQueries:
    """Tests for ancestor, descendant, path and sibling queries."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        """
        Build::

            Company
            ├── Engineering
            │   ├── Platform
            │   │   └── Storage
            │   └── Apps
            └── Finance
        """
        self.session = db_session
        hierarchy = hierarchy_service.create_hierarchy(
            organization_id=1, name="Corporate", max_depth=5
        )
        self.hierarchy = hierarchy
        self.company = node_service.create_node(hierarchy.id, "Company")
        self.engineering = node_service.create_node(
            hierarchy.id, "Engineering", parent_id=self.company.id
        )
        self.finance = node_service.create_node(
            hierarchy.id, "Finance", parent_id=self.company.id
        )
        self.platform = node_service.create_node(
            hierarchy.id, "Platform", parent_id=self.engineering.id
        )
        self.apps = node_service.create_node(
            hierarchy.id, "Apps", parent_id=self.engineering.id
        )
        self.storage = node_service.create_node(
            hierarchy.id, "Storage", parent_id=self.platform.id
        )

    def test_ancestors_run_from_parent_to_root(self):
        ancestors = node_service.get_ancestors(self.storage.id)

        assert [n.id for n in ancestors] == [
            self.platform.id,
            self.engineering.id,
            self.company.id,
        ]

    def test_root_has_no_ancestors(self):
        assert node_service.get_ancestors(self.company.id) == []

    def test_path_runs_from_root_to_node(self):
        path = node_service.get_path(self.storage.id)

        assert [n.name for n in path] == ["Company", "Engineering", "Platform", "Storage"]
        assert (
            node_service.get_path_string(self.storage.id)
            == "Company > Engineering > Platform > Storage"
        )

    def test_descendants_breadth_first(self):
        """Children come before grandchildren."""
        descendants = node_service.get_descendants(self.company.id)

        assert [n.name for n in descendants] == [
            "Engineering",
            "Finance",
            "Platform",
            "Apps",
            "Storage",
        ]

    def test_descendants_respect_max_depth(self):
        """max_depth=1 returns only the direct children."""
        descendants = node_service.get_descendants(self.company.id, max_depth=1)

        assert {n.id for n in descendants} == {self.engineering.id, self.finance.id}

    def test_inactive_nodes_are_excluded(self):
        node_service.deactivate_node(self.apps.id)

        children = node_service.get_children(self.engineering.id)
        all_children = node_service.get_children(self.engineering.id, active_only=False)

        assert [n.id for n in children] == [self.platform.id]
        assert len(all_children) == 2

    def test_subordinates_and_superiors(self):
        direct = node_service.get_subordinates(self.engineering.id, include_indirect=False)
        everyone = node_service.get_subordinates(self.engineering.id)

        assert [n.id for n in direct] == [self.platform.id, self.apps.id]
        assert [n.id for n in everyone] == [self.platform.id, self.apps.id, self.storage.id]
        assert [n.id for n in node_service.get_superiors(self.storage.id, False)] == [
            self.platform.id
        ]
        assert [n.id for n in node_service.get_superiors(self.storage.id)] == [
            self.platform.id,
            self.engineering.id,
            self.company.id,
        ]
        assert node_service.get_superiors(self.company.id, False) == []
        assert node_service.get_subordinates(9999) == []

    def test_nodes_by_employee(self):
        desk = node_service.create_node(
            self.hierarchy.id,
            "Storage Lead",
            node_type="position",
            parent_id=self.storage.id,
            employee_id=42,
        )

        assert [n.id for n in node_service.find_nodes_by_employee(42)] == [desk.id]
        assert node_service.find_nodes_by_employee(42, hierarchy_id=9999) == []

    def test_siblings_exclude_the_node(self):
        siblings = node_service.get_siblings(self.platform.id)

        assert [n.id for n in siblings] == [self.apps.id]

    def test_roots_and_hierarchy_listing(self):
        roots = node_service.find_root_nodes(self.hierarchy.id)
        nodes = node_service.find_nodes_by_hierarchy(self.hierarchy.id)

        assert [n.id for n in roots] == [self.company.id]
        assert [n.level for n in nodes] == [0, 1, 1, 2, 2, 3]

    def test_reorder_children_renumbers_from_one(self):
        """Gaps in sibling order are closed without changing the sequence."""
        self.engineering.node_order = 7
        self.finance.node_order = 12
        self.session.commit()

        children = node_service.reorder_children(self.company.id)

        assert [(n.name, n.node_order) for n in children] == [
            ("Engineering", 1),
            ("Finance", 2),
        ]

    def test_walk_stops_on_corrupted_cycle(self):
        """A parent-pointer loop raises instead of walking forever."""
        self.engineering.parent_id = self.storage.id
        self.session.commit()

        with pytest.raises(HierarchyIntegrityError):
            node_service.get_ancestors(self.storage.id)
        with pytest.raises(HierarchyIntegrityError):
            node_service.get_descendants(self.platform.id)


class TestReparentNode:
    """Tests for moving nodes and recomputing their subtrees."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        """
        Build two roots in a hierarchy with max_depth=3::

            Company -> Engineering -> Platform -> Storage
            Holding
        """
        self.session = db_session
        hierarchy = hierarchy_service.create_hierarchy(
            organization_id=1, name="Corporate", max_depth=3
        )
        self.hierarchy = hierarchy
        self.company = node_service.create_node(hierarchy.id, "Company")
        self.engineering = node_service.create_node(
            hierarchy.id, "Engineering", parent_id=self.company.id
        )
        self.platform = node_service.create_node(
            hierarchy.id, "Platform", parent_id=self.engineering.id
        )
        self.storage = node_service.create_node(
            hierarchy.id, "Storage", parent_id=self.platform.id
        )
        self.holding = node_service.create_node(hierarchy.id, "Holding")

    def test_move_recomputes_whole_subtree(self):
        """Every moved descendant gets a new level and path."""
        node_service.reparent_node(self.platform.id, self.holding.id)

        assert self.platform.level == 1
        assert self.platform.materialized_path == _path(self.holding, self.platform)
        assert self.storage.level == 2
        assert self.storage.materialized_path == _path(
            self.holding, self.platform, self.storage
        )

    def test_move_to_root(self):
        """A null parent makes the node a root at level 0."""
        node_service.reparent_node(self.engineering.id, None)

        assert self.engineering.parent_id is None
        assert self.engineering.level == 0
        assert self.engineering.materialized_path == str(self.engineering.id)
        assert self.storage.materialized_path == _path(
            self.engineering, self.platform, self.storage
        )

    def test_move_under_own_descendant_is_circular(self):
        with pytest.raises(CircularReference):
            node_service.reparent_node(self.engineering.id, self.storage.id)

        assert self.engineering.parent_id == self.company.id

    def test_move_under_itself_is_circular(self):
        with pytest.raises(CircularReference):
            node_service.reparent_node(self.platform.id, self.platform.id)

    def test_move_that_pushes_subtree_too_deep_is_rejected(self):
        """Platform carries Storage one level below it; level 3 + 1 > max_depth."""
        twig = node_service.create_node(
            self.hierarchy.id, "Twig", parent_id=self.engineering.id
        )

        with pytest.raises(DepthExceeded):
            node_service.reparent_node(self.platform.id, twig.id)

        assert self.storage.level == 3

    def test_move_to_other_hierarchy_is_rejected(self):
        other = hierarchy_service.create_hierarchy(organization_id=1, name="Projects")
        foreign = node_service.create_node(other.id, "Elsewhere")

        with pytest.raises(HierarchyMismatch):
            node_service.reparent_node(self.platform.id, foreign.id)

    def test_move_under_inactive_parent_is_rejected(self):
        node_service.deactivate_node(self.holding.id)

        with pytest.raises(InvalidParent):
            node_service.reparent_node(self.platform.id, self.holding.id)

    def test_move_closes_previous_hierarchical_edge(self):
        """The edge from the old parent no longer claims the moved node."""
        edge = relationship_service.create_relationship(
            self.engineering.id, self.platform.id, "hierarchical", self.hierarchy.id
        )

        node_service.reparent_node(self.platform.id, self.holding.id)

        edge = self.session.get(HierarchyRelationship, edge.id)
        assert edge.is_active is False
        assert edge.effective_to is not None

    def test_move_is_audited(self):
        node_service.reparent_node(self.platform.id, self.holding.id, user_id=None)

        entry = AuditLog.query.filter_by(
            entity_type="hierarchy_node", entity_id=self.platform.id, action_type="MOVE"
        ).one()
        assert str(self.holding.id) in entry.new_value


class TestValidatePosition:
    """Tests for cached level/path validation and repair."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        self.session = db_session
        hierarchy = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")
        self.hierarchy = hierarchy
        self.company = node_service.create_node(hierarchy.id, "Company")
        self.engineering = node_service.create_node(
            hierarchy.id, "Engineering", parent_id=self.company.id
        )
        self.platform = node_service.create_node(
            hierarchy.id, "Platform", parent_id=self.engineering.id
        )

    def test_consistent_node_is_valid(self):
        result = node_service.validate_position(self.platform.id)

        assert result.is_valid
        assert result.issues == []

    def test_drifted_level_and_path_are_reported(self):
        """Stale caches are findings, not exceptions."""
        self.platform.level = 7
        self.platform.materialized_path = "1/2/3/4"
        self.session.commit()

        result = node_service.validate_position(self.platform.id)

        assert result.issue_types() == ["LEVEL_INCONSISTENCY", "PATH_INCONSISTENCY"]
        level_issue = result.issues[0].to_dict()
        assert level_issue["expected"] == 2
        assert level_issue["actual"] == 7

    def test_rebuild_repairs_drifted_caches(self):
        self.engineering.level = 4
        self.platform.materialized_path = "broken"
        self.session.commit()

        count = node_service.rebuild_materialized_paths(self.hierarchy.id)

        assert count == 3
        assert node_service.validate_position(self.engineering.id).is_valid
        assert self.platform.materialized_path == _path(
            self.company, self.engineering, self.platform
        )

    def test_parent_cycle_is_reported(self):
        self.company.parent_id = self.platform.id
        self.session.commit()

        result = node_service.validate_position(self.engineering.id)

        assert result.issue_types() == ["CIRCULAR_REFERENCE"]

    def test_missing_node_is_reported(self):
        result = node_service.validate_position(9999)

        assert result.issue_types() == ["INVALID_ENDPOINT"]


class TestNodeLifecycle:
    """Tests for deactivation and claims."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session, make_user):
        self.session = db_session
        hierarchy = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")
        self.company = node_service.create_node(hierarchy.id, "Company")
        self.team = node_service.create_node(
            hierarchy.id, "Team", node_type="team", parent_id=self.company.id
        )
        self.alice = make_user()
        self.bob = make_user()

    def test_node_with_active_children_cannot_be_deactivated(self):
        with pytest.raises(NodeHasActiveChildren):
            node_service.deactivate_node(self.company.id)

    def test_leaf_deactivation_is_soft(self):
        node = node_service.deactivate_node(self.team.id)

        assert node.is_active is False
        assert node.effective_to is not None
        assert node_service.get_node(self.team.id) is not None

    def test_claim_is_exclusive(self):
        node_service.claim_node(self.team.id, self.alice.id)

        with pytest.raises(NodeAlreadyClaimed):
            node_service.claim_node(self.team.id, self.bob.id)

    def test_reclaim_by_holder_is_noop(self):
        node_service.claim_node(self.team.id, self.alice.id)
        node = node_service.claim_node(self.team.id, self.alice.id)

        assert node.user_id == self.alice.id

    def test_release_frees_the_node(self):
        node_service.claim_node(self.team.id, self.alice.id)
        node_service.release_node(self.team.id)
        node = node_service.claim_node(self.team.id, self.bob.id)

        assert node.user_id == self.bob.id
        assert [n.id for n in node_service.find_nodes_by_user(self.bob.id)] == [
            self.team.id
        ]

    def test_failed_audit_write_rolls_back_claim_and_deactivation(self, monkeypatch):
        def unavailable(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit_service, "log_change", unavailable)

        with pytest.raises(RuntimeError):
            node_service.claim_node(self.team.id, self.alice.id)
        with pytest.raises(RuntimeError):
            node_service.deactivate_node(self.team.id)

        node = node_service.get_node(self.team.id)
        assert node.user_id is None
        assert node.is_active is True
