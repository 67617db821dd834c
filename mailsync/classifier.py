"""Keyword rule engine assigning a :class:`Category` to each message.

Rules are evaluated top to bottom and the first match wins, so the
table order is part of the contract: out-of-office replies must never
be caught by the spam rule even when they come from a no-reply sender.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import Category


class MatchField(str, Enum):
    """Which normalized text a rule phrase set is matched against."""

    SUBJECT = "subject"
    BODY = "body"
    COMBINED = "combined"
    SENDER = "sender"


OUT_OF_OFFICE_PHRASES: frozenset[str] = frozenset({
    "out of office",
    "out of the office",
    "ooo",
    "away until",
    "away from",
    "vacation",
    "on leave",
    "will be back",
    "returning on",
    "out until",
    "unavailable until",
})

NOT_INTERESTED_PHRASES: frozenset[str] = frozenset({
    "not interested",
    "not a good fit",
    "no thanks",
    "no thank you",
    "not for me",
    "not right now",
    "not at this time",
    "unsubscribe",
    "remove me",
    "stop emailing",
    "stop sending",
    "do not contact",
    "remove from list",
    "opt out",
    "opt-out",
})

INTERESTED_PHRASES: frozenset[str] = frozenset({
    "interested",
    "sounds good",
    "yes",
    "let's connect",
    "send details",
    "send more",
    "tell me more",
    "i'm interested",
    "i am interested",
    "would like to",
    "would love to",
    "please send",
    "please share",
    "looking forward",
    "excited to",
    "definitely interested",
    "very interested",
})

MEETING_PHRASES: frozenset[str] = frozenset({
    "meeting",
    "schedule",
    "zoom",
    "google meet",
    "teams meeting",
    "microsoft teams",
    "calendar",
    ".ics",
    "calendar invite",
    "calendar invitation",
    "meet at",
    "meet on",
    "meet with",
    "call at",
    "call on",
    "call scheduled",
    "scheduled call",
    "appointment",
    "book a",
    "book an",
    "set up a meeting",
    "set up a call",
    "setup meeting",
    "setup call",
})

# Auto-reply markers also appear in the sender check below; they are
# removed from the keyword set so rule 5 cannot shadow rule 1.
_AUTO_REPLY_MARKERS: frozenset[str] = frozenset({
    "out of office",
    "away until",
    "vacation",
    "ooo",
    "out of the office",
})

SPAM_SENDER_INDICATORS: frozenset[str] = frozenset({
    "no-reply@",
    "noreply@",
    "donotreply@",
    "notifications@",
    "notification@",
    "noreply",
    "no-reply",
    "unsubscribe",
    "newsletter",
    "promo",
    "promotion",
    "discount",
    "sale",
    "deal",
    "offer",
    "otp",
    "verification code",
    "security alert",
    "password reset",
    "account verification",
    "transactional",
    "receipt",
    "invoice",
    "order confirmation",
    "shipping confirmation",
    "delivery notification",
    "auto-reply",
    "automatic reply",
}) | _AUTO_REPLY_MARKERS

SPAM_KEYWORDS: frozenset[str] = SPAM_SENDER_INDICATORS - _AUTO_REPLY_MARKERS


@dataclass(frozen=True)
class NormalizedText:
    """Trimmed, lower-cased message text the rules are matched against."""

    subject: str
    body: str
    sender: str

    @classmethod
    def from_raw(cls, subject: str | None, body: str | None, sender: str | None) -> NormalizedText:
        return cls(
            subject=(subject or "").strip().lower(),
            body=(body or "").strip().lower(),
            sender=(sender or "").strip().lower(),
        )

    @property
    def combined(self) -> str:
        return f"{self.subject} {self.body}"

    def get(self, field: MatchField) -> str:
        if field is MatchField.COMBINED:
            return self.combined
        return getattr(self, field.value)


@dataclass(frozen=True)
class Rule:
    """One tier of the rule table.

    The rule matches when any phrase is a substring of any of the
    listed *fields*.
    """

    category: Category
    phrases: frozenset[str]
    fields: tuple[MatchField, ...]

    def matches(self, text: NormalizedText) -> bool:
        return any(
            phrase in text.get(field)
            for field in self.fields
            for phrase in self.phrases
        )


DEFAULT_RULES: tuple[Rule, ...] = (
    Rule(Category.OUT_OF_OFFICE, OUT_OF_OFFICE_PHRASES, (MatchField.SUBJECT, MatchField.BODY)),
    Rule(Category.NOT_INTERESTED, NOT_INTERESTED_PHRASES, (MatchField.COMBINED,)),
    Rule(Category.INTERESTED, INTERESTED_PHRASES, (MatchField.COMBINED,)),
    Rule(Category.MEETINGS, MEETING_PHRASES, (MatchField.COMBINED,)),
    Rule(Category.SPAM, SPAM_SENDER_INDICATORS, (MatchField.SENDER,)),
    Rule(Category.SPAM, SPAM_KEYWORDS, (MatchField.COMBINED,)),
)


class MessageClassifier:
    """Evaluates an ordered rule table; falls back to :attr:`Category.INBOX`."""

    def __init__(self, rules: tuple[Rule, ...] = DEFAULT_RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def classify(self, subject: str | None, body: str | None, sender: str | None) -> Category:
        text = NormalizedText.from_raw(subject, body, sender)
        for rule in self._rules:
            if rule.matches(text):
                return rule.category
        return Category.INBOX


_default_classifier = MessageClassifier()


def classify_email(subject: str | None, body: str | None, sender: str | None) -> Category:
    """Classify with the default rule table."""
    return _default_classifier.classify(subject, body, sender)
