"""Training selection per conversation.

A conversation has at most one "sticky" training. It continues on every
message until an exit keyword arrives or it goes idle for longer than its
inactivity timeout; when none is sticky, the highest-priority matching
training takes over. Everything here is pure: no database, no clock.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence


class ActivationMode(str, Enum):
    ALWAYS = "always"
    KEYWORDS = "keywords"


class KeywordMatchType(str, Enum):
    ANY = "any"
    ALL = "all"


class MatchOutcome(str, Enum):
    NONE = "none"
    ACTIVATED = "activated"
    CONTINUED = "continued"
    EXITED = "exited"


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    content: str = ""
    activation_mode: ActivationMode = ActivationMode.KEYWORDS
    keywords: tuple[str, ...] = ()
    keyword_match_type: KeywordMatchType = KeywordMatchType.ANY
    exit_keywords: tuple[str, ...] = ()
    exit_message: Optional[str] = None
    inactivity_timeout_minutes: int = 0
    priority: int = 1
    is_active: bool = True
    type: str = "prompt"


@dataclass(frozen=True)
class StickyState:
    active_training_id: Optional[str] = None
    started_at: Optional[datetime] = None
    # Time of the previous message in the conversation, before this one.
    last_activity_at: Optional[datetime] = None

    @property
    def is_set(self) -> bool:
        return self.active_training_id is not None

    def cleared(self) -> "StickyState":
        return replace(self, active_training_id=None, started_at=None)


@dataclass(frozen=True)
class MatchDecision:
    state: StickyState
    rule: Optional[Rule] = None
    outcome: MatchOutcome = MatchOutcome.NONE
    exit_message: Optional[str] = None
    matched_keyword: Optional[str] = None
    # Why a previous sticky training was dropped: missing, expired, exited.
    dropped: Optional[str] = None


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "").lower()).strip()


def _clean_keywords(keywords: Iterable[str]) -> list[str]:
    return [kw for kw in (normalize_text(k) for k in keywords or ()) if kw]


def find_keyword(text: str, keywords: Iterable[str]) -> Optional[str]:
    """First keyword contained in text (case-insensitive substring)."""
    normalized = normalize_text(text)
    for keyword in _clean_keywords(keywords):
        if keyword in normalized:
            return keyword
    return None


def rule_matches(rule: Rule, text: str) -> tuple[bool, Optional[str]]:
    """Whether rule activates on text, plus the keyword that triggered it."""
    if rule.activation_mode == ActivationMode.ALWAYS:
        return True, None

    keywords = _clean_keywords(rule.keywords)
    if not keywords:
        # Keywords mode without keywords is invalid config: never matches.
        return False, None

    normalized = normalize_text(text)
    if rule.keyword_match_type == KeywordMatchType.ALL:
        if all(keyword in normalized for keyword in keywords):
            return True, keywords[0]
        return False, None

    for keyword in keywords:
        if keyword in normalized:
            return True, keyword
    return False, None


def sort_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Active rules, highest priority first; equal priorities by rule id."""
    active = [rule for rule in rules if rule.is_active]
    return sorted(active, key=lambda rule: (-rule.priority, rule.id))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(rule: Rule, state: StickyState, now: datetime) -> bool:
    if rule.inactivity_timeout_minutes <= 0:
        return False
    reference = _as_utc(state.last_activity_at) or _as_utc(state.started_at)
    if reference is None:
        return False
    return _as_utc(now) - reference > timedelta(minutes=rule.inactivity_timeout_minutes)


def resolve(
    rules: Sequence[Rule],
    state: StickyState,
    inbound_text: str,
    now: datetime,
) -> MatchDecision:
    """Decide which training governs the reply to inbound_text."""
    ordered = sort_rules(rules)
    dropped = None

    if state.is_set:
        sticky = next((rule for rule in ordered if rule.id == state.active_training_id), None)
        if sticky is None:
            dropped = "missing"
            state = state.cleared()
        elif is_expired(sticky, state, now):
            dropped = "expired"
            state = state.cleared()
        else:
            exit_keyword = find_keyword(inbound_text, sticky.exit_keywords)
            if exit_keyword:
                return MatchDecision(
                    state=state.cleared(),
                    rule=sticky,
                    outcome=MatchOutcome.EXITED,
                    exit_message=sticky.exit_message or None,
                    matched_keyword=exit_keyword,
                    dropped="exited",
                )
            return MatchDecision(state=state, rule=sticky, outcome=MatchOutcome.CONTINUED)

    for rule in ordered:
        matched, keyword = rule_matches(rule, inbound_text)
        if matched:
            return MatchDecision(
                state=replace(state, active_training_id=rule.id, started_at=_as_utc(now)),
                rule=rule,
                outcome=MatchOutcome.ACTIVATED,
                matched_keyword=keyword,
                dropped=dropped,
            )

    return MatchDecision(state=state, outcome=MatchOutcome.NONE, dropped=dropped)
