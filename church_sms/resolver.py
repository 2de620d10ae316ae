"""
Member and conversation resolution for inbound SMS.

Resolution runs as an ordered list of strategies. Each strategy returns zero or more
tagged candidates; a single merge step then picks the winning conversation.

- group: active conversations tied to a group the member belongs to
- multi_recipient: active broadcast conversations the member has already written in
- direct: conversations whose message history involves the inbound number
  (exact-string search first, then a digits-only re-scan of recent history)

The direct strategies are fallbacks: they only run when nothing before them matched.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from church_sms import storage
from church_sms.config import Settings
from church_sms.utils import NormalizedPhone, phone_matches

logger = logging.getLogger(__name__)

SOURCE_GROUP = "group"
SOURCE_MULTI_RECIPIENT = "multi_recipient"
SOURCE_DIRECT = "direct"

TITLE_BODY_LIMIT = 50
TITLE_BODY_TRUNCATE = 47


@dataclass(frozen=True)
class Candidate:
    conversation_id: int
    source: str


@dataclass(frozen=True)
class Resolution:
    conversation_id: int
    source: str
    created_at: datetime


# =============================================================================
# Identity Resolver
# =============================================================================

def resolve_member(db: Session, raw_phone: Optional[str], normalized: NormalizedPhone):
    """
    Find the member who owns ``raw_phone``.

    Exact lookups run in priority order (formatted, raw, digits, local) and stop at the
    first hit. When none hits, every member with a phone is scanned with a digits-only
    comparison, since stored numbers follow no single format.

    A database failure is logged and treated as "no member".
    """
    try:
        tried = set()
        for key in (normalized.formatted, raw_phone, normalized.digits, normalized.local):
            if not key or key in tried:
                continue
            tried.add(key)
            member = storage.find_member_by_phone(db, key)
            if member is not None:
                logger.info(f"Member {member.id} matched on exact phone {key!r}")
                return member

        for member in storage.list_members_with_phone(db):
            if phone_matches(member.phone, normalized):
                logger.info(f"Member {member.id} matched on digits-only scan ({member.phone!r})")
                return member
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Member lookup failed, continuing without a member: {e}")
        return None

    logger.info(f"No member found for {raw_phone!r}")
    return None


# =============================================================================
# Conversation Locator strategies
# =============================================================================

class Strategy:
    """One way of finding candidate conversations."""

    source: str = ""
    # Fallback strategies are skipped once an earlier strategy produced candidates
    fallback: bool = False
    requires_member: bool = False

    def find(self, db: Session, member, normalized: NormalizedPhone, settings: Settings) -> List[Candidate]:
        raise NotImplementedError


class GroupStrategy(Strategy):
    source = SOURCE_GROUP
    requires_member = True

    def find(self, db, member, normalized, settings):
        conversations = storage.list_member_group_conversations(db, member.id, settings.GROUP_SCAN_LIMIT)
        return [Candidate(c.id, self.source) for c in conversations]


class MultiRecipientStrategy(Strategy):
    source = SOURCE_MULTI_RECIPIENT
    requires_member = True

    def find(self, db, member, normalized, settings):
        conversations = storage.list_active_conversations_with_title_prefix(
            db, settings.MULTI_RECIPIENT_TITLE_PREFIX, settings.GROUP_SCAN_LIMIT
        )
        if not conversations:
            return []
        participated = storage.conversations_with_member_messages(
            db, member.id, [c.id for c in conversations]
        )
        return [Candidate(c.id, self.source) for c in conversations if c.id in participated]


class DirectHistoryStrategy(Strategy):
    source = SOURCE_DIRECT
    fallback = True

    def find(self, db, member, normalized, settings):
        ids = storage.conversation_ids_for_numbers(db, normalized.keys())
        return [Candidate(conversation_id, self.source) for conversation_id in ids]


class RecentHistoryDigitsStrategy(Strategy):
    """Digits-only re-scan of a bounded window of recent messages."""

    source = SOURCE_DIRECT
    fallback = True

    def find(self, db, member, normalized, settings):
        if not normalized.digits:
            return []
        seen = {}
        for message in storage.recent_messages(db, settings.HISTORY_SCAN_LIMIT):
            if message.conversation_id is None or message.conversation_id in seen:
                continue
            if phone_matches(message.from_number, normalized) or phone_matches(message.to_number, normalized):
                seen[message.conversation_id] = Candidate(message.conversation_id, self.source)
        return list(seen.values())


DEFAULT_STRATEGIES = (
    GroupStrategy(),
    MultiRecipientStrategy(),
    DirectHistoryStrategy(),
    RecentHistoryDigitsStrategy(),
)


def gather_candidates(
    db: Session,
    member,
    normalized: NormalizedPhone,
    settings: Settings,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> List[Candidate]:
    candidates: List[Candidate] = []
    for strategy in strategies:
        if strategy.requires_member and member is None:
            continue
        if strategy.fallback and candidates:
            continue
        found = strategy.find(db, member, normalized, settings)
        logger.debug(f"{type(strategy).__name__} found {len(found)} candidate(s)")
        candidates.extend(found)
    return candidates


def pick_conversation(db: Session, candidates: Sequence[Candidate]) -> Optional[Resolution]:
    """
    Pick the candidate whose conversation was created most recently.

    Ties on created_at go to the higher conversation id. Candidates pointing at
    conversations that no longer exist are ignored.
    """
    if not candidates:
        return None

    # First source seen wins when the same conversation is found twice
    sources = {}
    for candidate in candidates:
        sources.setdefault(candidate.conversation_id, candidate.source)

    conversations = storage.get_conversations_by_ids(db, list(sources))
    if not conversations:
        return None

    best = max(conversations, key=lambda c: (c.created_at, c.id))
    return Resolution(conversation_id=best.id, source=sources[best.id], created_at=best.created_at)


def locate_conversation(
    db: Session,
    member,
    normalized: NormalizedPhone,
    settings: Settings,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> Optional[Resolution]:
    """
    Return the conversation an inbound message belongs to, or None.

    A database failure while searching is logged and treated as "no match" so the
    message can still be provisioned and recorded.
    """
    try:
        candidates = gather_candidates(db, member, normalized, settings, strategies)
        resolution = pick_conversation(db, candidates)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Conversation lookup failed, continuing without a match: {e}")
        return None
    if resolution is None:
        logger.info("No existing conversation matched")
    else:
        logger.info(
            f"Conversation {resolution.conversation_id} selected via {resolution.source} "
            f"from {len(candidates)} candidate(s)"
        )
    return resolution


# =============================================================================
# Conversation Provisioner
# =============================================================================

def conversation_title(member, normalized: NormalizedPhone, body: Optional[str], raw_phone: Optional[str] = None) -> str:
    label = member.display_name if member is not None else ""
    if not label:
        # Senders without digits (alphanumeric ids) keep their raw value
        label = normalized.formatted or raw_phone or ""
    body = body or ""
    if len(body) > TITLE_BODY_LIMIT:
        body = body[:TITLE_BODY_TRUNCATE] + "..."
    return f"{label}: {body}"


def provision_conversation(
    db: Session,
    member,
    normalized: NormalizedPhone,
    body: Optional[str],
    raw_phone: Optional[str] = None,
) -> Optional[int]:
    """Create a general, active conversation. Returns None (and logs) when the insert fails."""
    title = conversation_title(member, normalized, body, raw_phone)
    try:
        conversation = storage.create_conversation(db, title=title, conversation_type="general", status="active")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create conversation {title!r}: {e}")
        return None
    return conversation.id
