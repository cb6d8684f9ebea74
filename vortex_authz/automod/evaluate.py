"""
Automod evaluation: apply a server's rules to an incoming message.

Rules are fetched once per message and evaluated in-process. Evaluation is
pure: it reports violations and leaves enforcement (blocking, timeouts,
alerts) to the caller.
"""

import re
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from vortex_authz.automod.schema import (
    ACTION_ALERT_CHANNEL,
    ACTION_BLOCK_MESSAGE,
    ACTION_TIMEOUT_MEMBER,
    TRIGGER_KEYWORD_FILTER,
    TRIGGER_LINK_SPAM,
    TRIGGER_MENTION_SPAM,
)

logger = logging.getLogger(__name__)

DEFAULT_MENTION_THRESHOLD = 5
DEFAULT_LINK_THRESHOLD = 3
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_REGEX_MAX_LENGTH = 200
DEFAULT_REGEX_BUDGET_MS = 50

# Bare domains only count when they end in a known TLD, so "hello.world" is not a link
URL_RE = re.compile(
    r"https?://[^\s]+|www\.[^\s]+|"
    r"(?:[a-z0-9-]+\.)+(?:com|org|net|io|edu|gov|co|uk|de|fr|jp|au|ca|us|app|dev|ai|tech|info|biz)"
    r"(?:/[^\s]*)?",
    re.IGNORECASE,
)

MENTION_RE = re.compile(r"<@[0-9a-f-]+>", re.IGNORECASE)


@dataclass(frozen=True)
class RuleViolation:
    """A rule that fired on a message."""
    rule_id: str
    rule_name: str
    trigger_type: str
    reason: str
    actions: List[Mapping[str, Any]] = field(default_factory=list)


def count_links(text: str) -> int:
    return len(URL_RE.findall(text))


def count_mentions(text: str, mentions: Sequence[str]) -> int:
    """Larger of inline <@id> tokens and the pre-resolved mention list."""
    return max(len(MENTION_RE.findall(text)), len(mentions))


def _violation(rule, reason: str) -> RuleViolation:
    return RuleViolation(
        rule_id=rule.rule_id,
        rule_name=rule.name,
        trigger_type=rule.trigger_type,
        reason=reason,
        actions=list(rule.actions),
    )


def _match_patterns(
    patterns: Iterable[Any],
    content: str,
    max_length: int,
    budget_ms: int,
) -> Optional[str]:
    """
    Return the first pattern that matches content, or None.

    Patterns longer than max_length and patterns that fail to compile are
    skipped. Once budget_ms of wall-clock time is spent, the remaining
    patterns are not tried.
    """
    deadline = time.monotonic() + budget_ms / 1000.0
    for pattern in patterns:
        if time.monotonic() > deadline:
            logger.warning("Automod regex budget exhausted; skipping remaining patterns")
            break
        if not isinstance(pattern, str) or len(pattern) > max_length:
            continue
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            logger.debug(f"Skipping invalid automod pattern {pattern!r}: {e}")
            continue
        if compiled.search(content):
            return pattern
    return None


def evaluate_rule(
    rule,
    content: str,
    mentions: Sequence[str] = (),
    regex_max_length: int = DEFAULT_REGEX_MAX_LENGTH,
    regex_budget_ms: int = DEFAULT_REGEX_BUDGET_MS,
) -> Optional[RuleViolation]:
    """
    Test a single rule against a message.

    Args:
        rule: Stored rule (rule_id, name, trigger_type, config, actions, enabled)
        content: Message text
        mentions: User ids the client resolved as mentioned
        regex_max_length: Longest regex pattern that will be tried
        regex_budget_ms: Wall-clock budget for a rule's regex patterns

    Returns:
        RuleViolation if the rule fires, otherwise None
    """
    if not rule.enabled:
        return None

    config = rule.config or {}

    if rule.trigger_type == TRIGGER_KEYWORD_FILTER:
        lower = content.lower()
        for keyword in config.get("keywords") or []:
            if keyword.lower() in lower:
                return _violation(rule, f'Blocked keyword: "{keyword}"')

        patterns = config.get("regex_patterns") or []
        if patterns:
            hit = _match_patterns(patterns, content, regex_max_length, regex_budget_ms)
            if hit is not None:
                return _violation(rule, f"Matched regex pattern: {hit}")
        return None

    if rule.trigger_type == TRIGGER_MENTION_SPAM:
        threshold = config.get("mention_threshold", DEFAULT_MENTION_THRESHOLD)
        count = count_mentions(content, mentions)
        if count >= threshold:
            return _violation(rule, f"Mention spam: {count} mentions (threshold {threshold})")
        return None

    if rule.trigger_type == TRIGGER_LINK_SPAM:
        threshold = config.get("link_threshold", DEFAULT_LINK_THRESHOLD)
        count = count_links(content)
        if count >= threshold:
            return _violation(rule, f"Link spam: {count} links (threshold {threshold})")
        return None

    return None


def evaluate_all_rules(
    rules: Iterable,
    content: str,
    mentions: Sequence[str] = (),
    regex_max_length: int = DEFAULT_REGEX_MAX_LENGTH,
    regex_budget_ms: int = DEFAULT_REGEX_BUDGET_MS,
) -> List[RuleViolation]:
    """Evaluate every enabled rule; violations come back in rule order."""
    if not content:
        return []

    violations = []
    for rule in rules:
        violation = evaluate_rule(rule, content, mentions, regex_max_length, regex_budget_ms)
        if violation is not None:
            violations.append(violation)

    if violations:
        logger.info(
            f"Automod: {len(violations)} rule(s) fired: "
            f"{', '.join(v.rule_name for v in violations)}"
        )
    return violations


def should_block_message(violations: Iterable[RuleViolation]) -> bool:
    return any(
        action.get("type") == ACTION_BLOCK_MESSAGE
        for violation in violations
        for action in violation.actions
    )


def get_timeout_duration(
    violations: Iterable[RuleViolation],
    default_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> Optional[float]:
    """
    Harshest timeout requested by any violation.

    A timeout_member action without duration_seconds counts as
    default_seconds. Returns None when no timeout was requested.
    """
    longest = 0
    for violation in violations:
        for action in violation.actions:
            if action.get("type") == ACTION_TIMEOUT_MEMBER:
                duration = action.get("duration_seconds")
                if duration is None:
                    duration = default_seconds
                longest = max(longest, duration)
    return longest if longest > 0 else None


def get_alert_channels(violations: Iterable[RuleViolation]) -> List[str]:
    """Distinct alert channel ids, in first-seen order."""
    channels: List[str] = []
    for violation in violations:
        for action in violation.actions:
            channel_id = action.get("channel_id")
            if action.get("type") == ACTION_ALERT_CHANNEL and channel_id and channel_id not in channels:
                channels.append(channel_id)
    return channels
