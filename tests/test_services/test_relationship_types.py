"""
Unit tests for the relationship-type compatibility table.

Run from the project root with::

    pytest tests/test_services/test_relationship_types.py -v
"""

from orgtree.services.relationship_types import (
    get_valid_relationship_types,
    is_valid_relationship_type,
)


class TestRelationshipTypes:
    """Lookups against the fixed (parent type, child type) table."""

    def test_listed_pair(self):
        assert get_valid_relationship_types("position", "position") == {
            "hierarchical",
            "matrix",
        }

    def test_pairs_are_ordered(self):
        """department -> location is listed; location -> department differs."""
        assert is_valid_relationship_type("geographical", "department", "location")
        assert is_valid_relationship_type("geographical", "location", "department")
        assert not is_valid_relationship_type("hierarchical", "location", "department")

    def test_unlisted_pair_allows_only_custom(self):
        assert get_valid_relationship_types("position", "department") == {"custom"}
        assert not is_valid_relationship_type("hierarchical", "position", "department")

    def test_custom_nodes_accept_every_edge_type(self):
        assert get_valid_relationship_types("custom", "custom") == {
            "custom",
            "hierarchical",
            "functional",
            "matrix",
            "geographical",
        }
