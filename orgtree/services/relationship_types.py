"""
Relationship-type compatibility table.

Maps an ordered (parent node type, child node type) pair to the edge
types allowed between them.  Any pair not listed allows only
``custom`` edges.  The table is fixed data; change it here, not in
validation code.
"""

DEFAULT_RELATIONSHIP_TYPES: frozenset[str] = frozenset({"custom"})

VALID_RELATIONSHIP_TYPES: dict[tuple[str, str], frozenset[str]] = {
    # department -> *
    ("department", "department"): frozenset({"hierarchical", "matrix", "functional"}),
    ("department", "team"): frozenset({"hierarchical", "functional"}),
    ("department", "position"): frozenset({"hierarchical"}),
    ("department", "role"): frozenset({"functional"}),
    ("department", "location"): frozenset({"geographical"}),
    ("department", "custom"): frozenset({"custom"}),
    # team -> *
    ("team", "team"): frozenset({"hierarchical", "matrix"}),
    ("team", "position"): frozenset({"hierarchical"}),
    ("team", "role"): frozenset({"functional"}),
    ("team", "custom"): frozenset({"custom"}),
    # position -> *
    ("position", "position"): frozenset({"hierarchical", "matrix"}),
    ("position", "role"): frozenset({"functional"}),
    ("position", "custom"): frozenset({"custom"}),
    # role -> *
    ("role", "role"): frozenset({"hierarchical", "functional"}),
    ("role", "custom"): frozenset({"custom"}),
    # location -> *
    ("location", "location"): frozenset({"geographical"}),
    ("location", "department"): frozenset({"geographical"}),
    ("location", "team"): frozenset({"geographical"}),
    ("location", "custom"): frozenset({"custom"}),
    # custom -> *
    ("custom", "custom"): frozenset(
        {"custom", "hierarchical", "functional", "matrix", "geographical"}
    ),
}


def get_valid_relationship_types(parent_type: str, child_type: str) -> frozenset[str]:
    """Return the allowed edge types for a (parent, child) node-type pair."""
    return VALID_RELATIONSHIP_TYPES.get(
        (parent_type, child_type), DEFAULT_RELATIONSHIP_TYPES
    )


def is_valid_relationship_type(
    relationship_type: str, parent_type: str, child_type: str
) -> bool:
    return relationship_type in get_valid_relationship_types(parent_type, child_type)
