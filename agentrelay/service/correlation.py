"""Correlation key derivation for webhook payloads.

The inbound webhook and every fetchresponse poll for the same conversation
turn must derive the same key, so both paths go through ``derive_key`` with
the channel's rule list. The rule order is the tie-break when a payload
carries more than one identifier field; reordering it changes which slot a
poll reads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

ANONYMOUS_USER = "anonymous"
KEY_SEPARATOR = "_"


class Channel(str, Enum):
    """Webhook integrations served under ``/webhook/{channel}``."""

    MANYCHAT = "manychat"
    UNIVERSAL = "universal"


def scalar_text(value: Any) -> Optional[str]:
    """Return a usable identifier string, or None when the value is missing."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        # JSON numbers such as 12.0 name the same contact as 12
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


@dataclass(frozen=True)
class IdentifierRule:
    """One candidate payload field and how to read it."""

    field: str
    extract: Callable[[Any], Optional[str]] = scalar_text

    def apply(self, payload: Mapping[str, Any]) -> Optional[str]:
        if self.field not in payload:
            return None
        return self.extract(payload[self.field])


def identifier_rules(*fields: str) -> Tuple[IdentifierRule, ...]:
    return tuple(IdentifierRule(field) for field in fields)


IDENTIFIER_RULES: Dict[Channel, Tuple[IdentifierRule, ...]] = {
    Channel.MANYCHAT: identifier_rules("contactId", "contact_id", "user_id", "subscriber_id"),
    Channel.UNIVERSAL: identifier_rules(
        "contactId",
        "contact_id",
        "userId",
        "user_id",
        "from",
        "From",
        "sender",
        "subscriber_id",
    ),
}


def first_match(
    payload: Mapping[str, Any], rules: Sequence[IdentifierRule]
) -> Optional[str]:
    for rule in rules:
        value = rule.apply(payload)
        if value is not None:
            return value
    return None


def extract_user_id(payload: Mapping[str, Any], channel: Channel) -> str:
    """Return the end-user identifier, falling back to ``anonymous``."""
    if not isinstance(payload, Mapping):
        return ANONYMOUS_USER
    return first_match(payload, IDENTIFIER_RULES[Channel(channel)]) or ANONYMOUS_USER


def build_key(webhook_id: str, user_id: str) -> str:
    return f"{webhook_id}{KEY_SEPARATOR}{user_id}"


def derive_key(
    webhook_id: str, payload: Mapping[str, Any], channel: Channel = Channel.UNIVERSAL
) -> str:
    """Build ``{webhook_id}_{user_id}`` for a webhook payload.

    Senders that expose no recognised identifier all share the
    ``{webhook_id}_anonymous`` key.
    """
    return build_key(webhook_id, extract_user_id(payload, channel))


__all__ = [
    "ANONYMOUS_USER",
    "Channel",
    "IDENTIFIER_RULES",
    "IdentifierRule",
    "build_key",
    "derive_key",
    "extract_user_id",
    "first_match",
    "identifier_rules",
    "scalar_text",
]
