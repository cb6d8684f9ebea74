"""
Automod rule schemas and validation.

A rule's (trigger_type, config, actions) triple is parsed into a tagged
union: one config model per trigger kind, selected by trigger_type, and one
model per action kind, selected by the action's "type". Validation is pure
and runs on both creation and on any update touching config or actions.
"""

import logging
import re
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from vortex_authz.errors import InvalidInputError

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

TRIGGER_KEYWORD_FILTER = "keyword_filter"
TRIGGER_MENTION_SPAM = "mention_spam"
TRIGGER_LINK_SPAM = "link_spam"

VALID_TRIGGER_TYPES = (TRIGGER_KEYWORD_FILTER, TRIGGER_MENTION_SPAM, TRIGGER_LINK_SPAM)

ACTION_BLOCK_MESSAGE = "block_message"
ACTION_TIMEOUT_MEMBER = "timeout_member"
ACTION_ALERT_CHANNEL = "alert_channel"

VALID_ACTION_TYPES = (ACTION_BLOCK_MESSAGE, ACTION_TIMEOUT_MEMBER, ACTION_ALERT_CHANNEL)

# A quantified group whose body is itself quantified: (a+)+, (.*)*, ([a-z]+\s)+
UNSAFE_REGEX_RE = re.compile(r"\([^)]*[+*?][^)]*\)[+*?{]")


def _require_positive_number(value: Any, message: str) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(message)
    if value <= 0:
        raise ValueError(message)
    return value


def _require_string_list(value: Any, message: str) -> List[str]:
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ValueError(message)
    return value


class _Schema(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ============================================================================
# Trigger Configs
# ============================================================================

KEYWORDS_REQUIRED = "keyword_filter config must have keywords: list of strings"
MENTION_THRESHOLD_REQUIRED = "mention_spam config must have mention_threshold: number greater than 0"
LINK_THRESHOLD_REQUIRED = "link_spam config must have link_threshold: number greater than 0"

# Absent fields never reach the field validators
MISSING_CONFIG_MESSAGES = {
    "keywords": KEYWORDS_REQUIRED,
    "mention_threshold": MENTION_THRESHOLD_REQUIRED,
    "link_threshold": LINK_THRESHOLD_REQUIRED,
}


class KeywordFilterConfig(_Schema):
    """Blocks messages containing any keyword or matching any pattern."""
    keywords: List[str]
    regex_patterns: Optional[List[str]] = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _check_keywords(cls, value):
        _require_string_list(value, KEYWORDS_REQUIRED)
        if not value:
            raise ValueError("keyword_filter config.keywords must not be empty")
        return value

    @field_validator("regex_patterns", mode="before")
    @classmethod
    def _check_patterns(cls, value):
        if value is None:
            return value
        _require_string_list(value, "keyword_filter config.regex_patterns must be a list of strings if provided")
        for pattern in value:
            if UNSAFE_REGEX_RE.search(pattern):
                raise ValueError(
                    f"regex pattern contains unsafe nested quantifiers and was rejected: {pattern}"
                )
        return value


class MentionSpamConfig(_Schema):
    """Fires when a message mentions at least mention_threshold users."""
    mention_threshold: Union[int, float]

    @field_validator("mention_threshold", mode="before")
    @classmethod
    def _check_threshold(cls, value):
        return _require_positive_number(
            value, MENTION_THRESHOLD_REQUIRED
        )


class LinkSpamConfig(_Schema):
    """Fires when a message contains at least link_threshold links."""
    link_threshold: Union[int, float]

    @field_validator("link_threshold", mode="before")
    @classmethod
    def _check_threshold(cls, value):
        return _require_positive_number(
            value, LINK_THRESHOLD_REQUIRED
        )


class KeywordFilterTrigger(_Schema):
    trigger_type: Literal["keyword_filter"]
    config: KeywordFilterConfig


class MentionSpamTrigger(_Schema):
    trigger_type: Literal["mention_spam"]
    config: MentionSpamConfig


class LinkSpamTrigger(_Schema):
    trigger_type: Literal["link_spam"]
    config: LinkSpamConfig


AutomodTrigger = Annotated[
    Union[KeywordFilterTrigger, MentionSpamTrigger, LinkSpamTrigger],
    Field(discriminator="trigger_type"),
]


# ============================================================================
# Actions
# ============================================================================

class BlockMessageAction(_Schema):
    """Reject the message before it is stored."""
    type: Literal["block_message"]


class TimeoutMemberAction(_Schema):
    """Time the author out; duration defaults at enforcement time."""
    type: Literal["timeout_member"]
    duration_seconds: Optional[Union[int, float]] = None

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _check_duration(cls, value):
        if value is None:
            return value
        return _require_positive_number(
            value, "timeout_member action duration_seconds must be a number greater than 0"
        )


class AlertChannelAction(_Schema):
    """Post an alert into a moderator channel."""
    type: Literal["alert_channel"]
    channel_id: str

    @field_validator("channel_id", mode="before")
    @classmethod
    def _check_channel(cls, value):
        if not isinstance(value, str) or value == "":
            raise ValueError("alert_channel action must include a non-empty channel_id")
        return value


AutomodAction = Annotated[
    Union[BlockMessageAction, TimeoutMemberAction, AlertChannelAction],
    Field(discriminator="type"),
]


class AutomodRuleDefinition(_Schema):
    """A validated trigger plus its ordered actions."""
    trigger: AutomodTrigger
    actions: List[AutomodAction] = Field(min_length=1)

    @property
    def trigger_type(self) -> str:
        return self.trigger.trigger_type

    @property
    def config(self):
        return self.trigger.config

    def config_dict(self) -> dict:
        return self.trigger.config.model_dump(exclude_none=True)

    def actions_list(self) -> List[dict]:
        return [action.model_dump(exclude_none=True) for action in self.actions]


_TRIGGER_ADAPTER = TypeAdapter(AutomodTrigger)
_ACTIONS_ADAPTER = TypeAdapter(List[AutomodAction])


# ============================================================================
# Validation Entry Points
# ============================================================================

def parse_rule(trigger_type: Any, config: Any, actions: Any) -> AutomodRuleDefinition:
    """
    Parse a rule payload into its typed definition.

    Checks run in a fixed order (trigger type, config, then actions) and
    the first failure wins.

    Args:
        trigger_type: One of VALID_TRIGGER_TYPES
        config: Trigger-specific config mapping
        actions: Non-empty list of action mappings

    Returns:
        AutomodRuleDefinition

    Raises:
        InvalidInputError: With the first problem found
    """
    if trigger_type not in VALID_TRIGGER_TYPES:
        raise InvalidInputError(f"trigger_type must be one of: {', '.join(VALID_TRIGGER_TYPES)}")

    if config is None or not isinstance(config, Mapping):
        raise InvalidInputError("config must be a non-null object")

    try:
        trigger = _TRIGGER_ADAPTER.validate_python(
            {"trigger_type": trigger_type, "config": dict(config)}
        )
    except ValidationError as e:
        raise InvalidInputError(_format_validation_error(e)) from e

    if not isinstance(actions, list) or len(actions) == 0:
        raise InvalidInputError("actions must be a non-empty array")

    for action in actions:
        if not isinstance(action, Mapping):
            raise InvalidInputError("each action must be an object")
        if action.get("type") not in VALID_ACTION_TYPES:
            raise InvalidInputError(f"action.type must be one of: {', '.join(VALID_ACTION_TYPES)}")

    try:
        parsed_actions = _ACTIONS_ADAPTER.validate_python([dict(action) for action in actions])
    except ValidationError as e:
        raise InvalidInputError(_format_validation_error(e, prefix="actions")) from e

    return AutomodRuleDefinition(trigger=trigger, actions=parsed_actions)


def validate_rule(trigger_type: Any, config: Any, actions: Any) -> Optional[str]:
    """
    Validate a rule payload.

    Returns:
        None when valid, otherwise a message describing the first problem

    Examples:
        >>> validate_rule("mention_spam", {"mention_threshold": 5}, [{"type": "block_message"}]) is None
        True
        >>> validate_rule("unknown", {}, [])
        'trigger_type must be one of: keyword_filter, mention_spam, link_spam'
    """
    try:
        parse_rule(trigger_type, config, actions)
    except InvalidInputError as e:
        logger.debug(f"Automod rule rejected: {e.message}")
        return e.message
    return None


def _format_validation_error(error: ValidationError, prefix: Optional[str] = None) -> str:
    """Render the first pydantic error as a single message."""
    first = error.errors()[0]
    tags = set(VALID_TRIGGER_TYPES) | set(VALID_ACTION_TYPES)
    parts = [prefix] if prefix else []
    parts.extend(str(part) for part in first.get("loc", ()) if part not in tags)
    path = ".".join(parts)

    # Messages raised by our own validators already name the field
    if first.get("type") == "value_error":
        message = first.get("msg", "")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        return message

    if first.get("type") == "missing":
        loc = first.get("loc", ())
        if "config" in loc and loc[-1] in MISSING_CONFIG_MESSAGES:
            return MISSING_CONFIG_MESSAGES[loc[-1]]
        return f"{path} is required" if path else "missing required field"

    message = first.get("msg", "invalid value")
    return f"{path}: {message}" if path else message
