"""
Automod: rule validation, storage and evaluation.
"""

from .schema import (
    VALID_TRIGGER_TYPES,
    VALID_ACTION_TYPES,
    UNSAFE_REGEX_RE,
    AutomodRuleDefinition,
    parse_rule,
    validate_rule,
)

from .evaluate import (
    RuleViolation,
    evaluate_rule,
    evaluate_all_rules,
    should_block_message,
    get_timeout_duration,
    get_alert_channels,
)

from .rules import (
    AutomodRule,
    AutomodRuleStore,
    build_rule,
    merge_rule_patch,
)

__all__ = [
    # Schema
    "VALID_TRIGGER_TYPES",
    "VALID_ACTION_TYPES",
    "UNSAFE_REGEX_RE",
    "AutomodRuleDefinition",
    "parse_rule",
    "validate_rule",
    # Evaluation
    "RuleViolation",
    "evaluate_rule",
    "evaluate_all_rules",
    "should_block_message",
    "get_timeout_duration",
    "get_alert_channels",
    # Rules
    "AutomodRule",
    "AutomodRuleStore",
    "build_rule",
    "merge_rule_patch",
]
