"""
Unit tests for typed role configuration parsing.

Run from the project root with::

    pytest tests/test_services/test_role_config.py -v
"""

import pytest

from orgtree.errors import InvalidConfig, MissingConditions, MissingInheritanceRules
from orgtree.models.role_config import (
    ConditionalRoleConfig,
    ContextualRoleConfig,
    HierarchicalRoleConfig,
    StaticRoleConfig,
    TemporalRoleConfig,
    dump_role_config,
    parse_role_config,
)


class TestParseRoleConfig:
    """Each role type parses into exactly one config variant."""

    def test_static_keeps_extra_keys_as_options(self):
        config = parse_role_config("static", {"label": "Read only"})

        assert isinstance(config, StaticRoleConfig)
        assert config.options == {"label": "Read only"}

    def test_empty_values_parse_for_static(self):
        assert parse_role_config("static", None).options == {}
        assert parse_role_config("static", "").options == {}

    def test_json_string_is_accepted(self):
        config = parse_role_config(
            "hierarchical", '{"inheritance_rules": {"direction": "down"}, "note": "x"}'
        )

        assert isinstance(config, HierarchicalRoleConfig)
        assert config.inheritance_rules == {"direction": "down"}
        assert config.options == {"note": "x"}

    def test_hierarchical_without_rules(self):
        with pytest.raises(MissingInheritanceRules):
            parse_role_config("hierarchical", {"inheritance_rules": {}})

    def test_conditional_without_conditions(self):
        with pytest.raises(MissingConditions):
            parse_role_config("conditional", {})

    def test_conditional_with_conditions(self):
        config = parse_role_config(
            "conditional", {"conditions": {"time_constraints": {"days_of_week": [1]}}}
        )

        assert isinstance(config, ConditionalRoleConfig)

    def test_temporal_schedule_is_optional(self):
        config = parse_role_config("temporal", {})

        assert isinstance(config, TemporalRoleConfig)
        assert config.schedule == {}

    def test_contextual_keys_must_be_strings(self):
        config = parse_role_config("contextual", {"context_keys": ["project", "site"]})

        assert isinstance(config, ContextualRoleConfig)
        assert config.context_keys == ("project", "site")
        with pytest.raises(InvalidConfig):
            parse_role_config("contextual", {"context_keys": [1, 2]})

    def test_unknown_role_type(self):
        with pytest.raises(InvalidConfig):
            parse_role_config("quantum", {})

    def test_non_object_config(self):
        with pytest.raises(InvalidConfig):
            parse_role_config("static", "[1, 2, 3]")
        with pytest.raises(InvalidConfig):
            parse_role_config("static", "{broken")

    def test_dump_restores_stored_shape(self):
        raw = {"inheritance_rules": {"direction": "down"}, "note": "x"}

        assert dump_role_config(parse_role_config("hierarchical", raw)) == raw
