"""
Tests for the custom Flask CLI commands.
"""

import pytest

from orgtree.services import hierarchy_service, node_service


class TestHierarchyCommands:
    """hierarchy-audit and rebuild-paths against a small tree."""

    @pytest.fixture(autouse=True)
    def _setup(self, app, db_session):
        self.session = db_session
        self.runner = app.test_cli_runner()
        self.hierarchy = hierarchy_service.create_hierarchy(organization_id=1, name="Corporate")
        self.company = node_service.create_node(self.hierarchy.id, "Company")
        self.team = node_service.create_node(
            self.hierarchy.id, "Team", parent_id=self.company.id
        )

    def test_audit_passes_on_clean_tree(self):
        result = self.runner.invoke(args=["hierarchy-audit", str(self.hierarchy.id)])

        assert result.exit_code == 0
        assert "No structural issues found" in result.output

    def test_audit_fails_on_drift_and_rebuild_repairs(self):
        self.team.level = 4
        self.session.commit()

        failed = self.runner.invoke(args=["hierarchy-audit", str(self.hierarchy.id)])
        rebuilt = self.runner.invoke(args=["rebuild-paths", str(self.hierarchy.id)])
        passed = self.runner.invoke(args=["hierarchy-audit", str(self.hierarchy.id)])

        assert failed.exit_code == 1
        assert "LEVEL_INCONSISTENCY" in failed.output
        assert "Rebuilt 2 node(s)" in rebuilt.output
        assert passed.exit_code == 0

    def test_audit_of_unknown_hierarchy(self):
        result = self.runner.invoke(args=["hierarchy-audit", "9999"])

        assert result.exit_code == 1
        assert "INVALID_ENDPOINT" in result.output

    def test_db_check_lists_tables(self):
        result = self.runner.invoke(args=["db-check"])

        assert "All checks passed" in result.output
