"""
Typed role configuration.

A role's stored ``config`` JSON is parsed into exactly one variant per
``role_type`` when the role is constructed, so a hierarchical role
without inheritance rules or a conditional role without conditions
cannot be created.  ``dump_role_config`` turns a variant back into the
JSON stored on the row.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

from orgtree.errors import InvalidConfig, MissingConditions, MissingInheritanceRules

ROLE_TYPES = ("static", "dynamic", "hierarchical", "conditional", "temporal", "contextual")


@dataclass(frozen=True)
class StaticRoleConfig:
    """Fixed permission bundle; extra keys are kept as options."""

    options: dict[str, Any] = field(default_factory=dict)
    role_type = "static"


@dataclass(frozen=True)
class DynamicRoleConfig:
    options: dict[str, Any] = field(default_factory=dict)
    role_type = "dynamic"


@dataclass(frozen=True)
class HierarchicalRoleConfig:
    """Role whose grants flow along the tree per ``inheritance_rules``."""

    inheritance_rules: dict[str, Any]
    options: dict[str, Any] = field(default_factory=dict)
    role_type = "hierarchical"


@dataclass(frozen=True)
class ConditionalRoleConfig:
    """Role that applies only while ``conditions`` hold."""

    conditions: dict[str, Any]
    options: dict[str, Any] = field(default_factory=dict)
    role_type = "conditional"


@dataclass(frozen=True)
class TemporalRoleConfig:
    schedule: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    role_type = "temporal"


@dataclass(frozen=True)
class ContextualRoleConfig:
    context_keys: tuple[str, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)
    role_type = "contextual"


RoleConfig = Union[
    StaticRoleConfig,
    DynamicRoleConfig,
    HierarchicalRoleConfig,
    ConditionalRoleConfig,
    TemporalRoleConfig,
    ContextualRoleConfig,
]


def _coerce_mapping(raw: Any) -> dict[str, Any]:
    """Accept a dict, a JSON object string, or None."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidConfig("Role configuration is not valid JSON") from exc
    if not isinstance(raw, dict):
        raise InvalidConfig("Role configuration must be a JSON object")
    return dict(raw)


def parse_role_config(role_type: str, raw: Any) -> RoleConfig:
    """
    Build the config variant for ``role_type`` from stored JSON.

    Args:
        role_type: One of ``ROLE_TYPES``.
        raw:       The stored config (dict, JSON string or None).

    Returns:
        The matching frozen config dataclass.

    Raises:
        InvalidConfig:           Unknown role type or malformed JSON.
        MissingInheritanceRules: Hierarchical role without rules.
        MissingConditions:       Conditional role without conditions.
    """
    data = _coerce_mapping(raw)

    if role_type == "static":
        return StaticRoleConfig(options=data)
    if role_type == "dynamic":
        return DynamicRoleConfig(options=data)
    if role_type == "hierarchical":
        rules = data.pop("inheritance_rules", None)
        if not rules:
            raise MissingInheritanceRules("Hierarchical roles must define inheritance rules")
        if not isinstance(rules, dict):
            raise InvalidConfig("inheritance_rules must be a JSON object")
        return HierarchicalRoleConfig(inheritance_rules=rules, options=data)
    if role_type == "conditional":
        conditions = data.pop("conditions", None)
        if not conditions:
            raise MissingConditions("Conditional roles must define conditions")
        if not isinstance(conditions, dict):
            raise InvalidConfig("conditions must be a JSON object")
        return ConditionalRoleConfig(conditions=conditions, options=data)
    if role_type == "temporal":
        schedule = data.pop("schedule", None) or {}
        if not isinstance(schedule, dict):
            raise InvalidConfig("schedule must be a JSON object")
        return TemporalRoleConfig(schedule=schedule, options=data)
    if role_type == "contextual":
        keys = data.pop("context_keys", None) or []
        if not isinstance(keys, (list, tuple)) or not all(isinstance(k, str) for k in keys):
            raise InvalidConfig("context_keys must be a list of strings")
        return ContextualRoleConfig(context_keys=tuple(keys), options=data)

    raise InvalidConfig(f"Unknown role type '{role_type}'")


def dump_role_config(config: RoleConfig) -> dict[str, Any]:
    """Serialize a config variant to the JSON shape stored on the role."""
    data = dict(config.options)
    if isinstance(config, HierarchicalRoleConfig):
        data["inheritance_rules"] = config.inheritance_rules
    elif isinstance(config, ConditionalRoleConfig):
        data["conditions"] = config.conditions
    elif isinstance(config, TemporalRoleConfig) and config.schedule:
        data["schedule"] = config.schedule
    elif isinstance(config, ContextualRoleConfig) and config.context_keys:
        data["context_keys"] = list(config.context_keys)
    return data
