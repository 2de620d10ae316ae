"""
Inbound SMS pipeline: normalize -> resolve member -> locate or provision conversation -> record.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from church_sms import storage
from church_sms.config import Settings
from church_sms.resolver import locate_conversation, provision_conversation, resolve_member
from church_sms.schemas import InboundSms
from church_sms.utils import normalize_phone

logger = logging.getLogger(__name__)

SOURCE_NEW = "new"
SOURCE_NONE = "none"


@dataclass
class InboundResult:
    message: object
    member_id: Optional[int]
    conversation_id: Optional[int]
    match_source: str
    created_conversation: bool = False
    duplicate: bool = False


def record_message(
    db: Session,
    sms: InboundSms,
    member_id: Optional[int],
    conversation_id: Optional[int],
):
    """
    Persist the inbound message, then bump the conversation's updated_at.

    The numbers are stored exactly as received. A failed insert propagates; a failed
    timestamp refresh only affects recency ordering and is logged.
    """
    message = storage.create_message(
        db,
        twilio_sid=sms.message_sid,
        from_number=sms.from_number,
        to_number=sms.to_number,
        body=sms.body,
        member_id=member_id,
        conversation_id=conversation_id,
    )
    if conversation_id is not None:
        try:
            storage.touch_conversation(db, conversation_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to refresh conversation {conversation_id} updated_at: {e}")
    return message


def process_inbound_sms(db: Session, sms: InboundSms, settings: Settings) -> InboundResult:
    if settings.ENFORCE_UNIQUE_MESSAGE_SID and sms.message_sid:
        existing = storage.find_message_by_sid(db, sms.message_sid)
        if existing is not None:
            logger.info(f"Duplicate MessageSid {sms.message_sid}, skipping")
            return InboundResult(
                message=existing,
                member_id=existing.member_id,
                conversation_id=existing.conversation_id,
                match_source=SOURCE_NONE,
                duplicate=True,
            )

    normalized = normalize_phone(sms.from_number)
    logger.debug(f"Normalized {sms.from_number!r} -> {normalized}")

    member = resolve_member(db, sms.from_number, normalized)
    member_id = member.id if member is not None else None

    resolution = locate_conversation(db, member, normalized, settings)

    created = False
    if resolution is not None:
        conversation_id = resolution.conversation_id
        source = resolution.source
    else:
        conversation_id = provision_conversation(db, member, normalized, sms.body, sms.from_number)
        created = conversation_id is not None
        source = SOURCE_NEW if created else SOURCE_NONE

    message = record_message(db, sms, member_id, conversation_id)

    return InboundResult(
        message=message,
        member_id=member_id,
        conversation_id=conversation_id,
        match_source=source,
        created_conversation=created,
    )
