import logging
from datetime import datetime, timezone
from typing import Generator, Optional, Sequence, Tuple

from sqlalchemy import create_engine, func, inspect, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from church_sms.config import settings

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("members", "group_members", "sms_conversations", "sms_messages")

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {engine.url!r}")
    try:
        # Import models to register them with Base.metadata
        from church_sms import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and every table this service reads is present.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            existing = set(inspect(db.get_bind()).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Member Repository Functions
# =============================================================================

def find_member_by_phone(db: Session, phone: str):
    """Exact match on the stored phone string. Lowest id wins when several rows match."""
    from church_sms.models import Member

    return (
        db.query(Member)
        .filter(Member.phone == phone)
        .order_by(Member.id.asc())
        .first()
    )


def list_members_with_phone(db: Session) -> list:
    from church_sms.models import Member

    return (
        db.query(Member)
        .filter(Member.phone.isnot(None))
        .order_by(Member.id.asc())
        .all()
    )


# =============================================================================
# Conversation Repository Functions
# =============================================================================

def list_member_group_conversations(db: Session, member_id: int, limit: int) -> list:
    """Active conversations tied to any group the member belongs to, newest first."""
    from church_sms.models import Conversation, GroupMember

    member_groups = select(GroupMember.group_id).where(GroupMember.member_id == member_id)
    return (
        db.query(Conversation)
        .filter(Conversation.status == "active")
        .filter(Conversation.group_id.in_(member_groups))
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
        .limit(limit)
        .all()
    )


def list_active_conversations_with_title_prefix(db: Session, prefix: str, limit: int) -> list:
    from church_sms.models import Conversation

    # startswith() escapes LIKE wildcards in the prefix
    return (
        db.query(Conversation)
        .filter(Conversation.status == "active")
        .filter(Conversation.title.startswith(prefix, autoescape=True))
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
        .limit(limit)
        .all()
    )


def get_conversations_by_ids(db: Session, conversation_ids: Sequence[int]) -> list:
    from church_sms.models import Conversation

    if not conversation_ids:
        return []
    return (
        db.query(Conversation)
        .filter(Conversation.id.in_(list(conversation_ids)))
        .all()
    )


def create_conversation(
    db: Session,
    title: str,
    conversation_type: str = "general",
    status: str = "active",
    group_id: Optional[int] = None,
):
    """
    Insert a conversation and return it.

    Raises the underlying SQLAlchemyError after rolling back.
    """
    from church_sms.models import Conversation

    now = utcnow()
    conversation = Conversation(
        title=title,
        conversation_type=conversation_type,
        status=status,
        group_id=group_id,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Conversation created: id={conversation.id}, title={title!r}")
    return conversation


def touch_conversation(db: Session, conversation_id: int) -> None:
    """Refresh a conversation's updated_at marker to now."""
    from church_sms.models import Conversation

    try:
        db.query(Conversation).filter(Conversation.id == conversation_id).update(
            {Conversation.updated_at: utcnow()}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def get_conversations(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = None,
) -> Tuple[list, int]:
    from church_sms.models import Conversation

    query = db.query(Conversation)
    if status:
        query = query.filter(Conversation.status == status)

    total = query.count()
    conversations = (
        query.order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    logger.info(f"Retrieved {len(conversations)} of {total} total conversations")
    return conversations, total


# =============================================================================
# Message Repository Functions
# =============================================================================

def find_message_by_sid(db: Session, twilio_sid: str):
    from church_sms.models import Message

    return (
        db.query(Message)
        .filter(Message.twilio_sid == twilio_sid)
        .order_by(Message.id.asc())
        .first()
    )


def conversations_with_member_messages(
    db: Session, member_id: int, conversation_ids: Sequence[int]
) -> set:
    """Return the subset of ``conversation_ids`` holding any message from the member (one query)."""
    from church_sms.models import Message

    if not conversation_ids:
        return set()
    rows = (
        db.query(Message.conversation_id)
        .filter(Message.member_id == member_id)
        .filter(Message.conversation_id.in_(list(conversation_ids)))
        .distinct()
        .all()
    )
    return {row.conversation_id for row in rows}


def conversation_ids_for_numbers(db: Session, numbers: Sequence[str]) -> list:
    """Distinct conversation ids of messages sent from or to any of ``numbers`` (exact string match)."""
    from church_sms.models import Message

    keys = [n for n in dict.fromkeys(numbers) if n]
    if not keys:
        return []
    rows = (
        db.query(Message.conversation_id)
        .filter(Message.conversation_id.isnot(None))
        .filter(or_(Message.from_number.in_(keys), Message.to_number.in_(keys)))
        .distinct()
        .all()
    )
    return [row.conversation_id for row in rows]


def recent_messages(db: Session, limit: int) -> list:
    from church_sms.models import Message

    return (
        db.query(Message)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )


def create_message(
    db: Session,
    twilio_sid: Optional[str],
    from_number: str,
    to_number: Optional[str],
    body: str,
    member_id: Optional[int] = None,
    conversation_id: Optional[int] = None,
    direction: str = "inbound",
    status: str = "delivered",
):
    """
    Insert one message row and return it.

    Args:
        db: Database session
        twilio_sid: Provider message id (not unique at the schema level)
        from_number: Sender number exactly as received
        to_number: Recipient number exactly as received
        body: Message text
        member_id: Resolved member, if any
        conversation_id: Resolved or provisioned conversation, if any

    Raises the underlying SQLAlchemyError after rolling back.
    """
    from church_sms.models import Message

    logger.info(f"Creating message: sid={twilio_sid}, from={from_number}, to={to_number}")

    now = utcnow()
    message = Message(
        twilio_sid=twilio_sid,
        direction=direction,
        from_number=from_number,
        to_number=to_number,
        body=body,
        status=status,
        member_id=member_id,
        conversation_id=conversation_id,
        delivered_at=now,
        created_at=now,
    )
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message {twilio_sid}: {e}")
        raise
    logger.info(f"Message created successfully: id={message.id}, sid={twilio_sid}")
    return message


def get_messages(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    conversation_id: Optional[int] = None,
    member_id: Optional[int] = None,
    direction: Optional[str] = None,
    from_number: Optional[str] = None,
) -> Tuple[list, int]:
    """
    Retrieve messages with pagination and filtering.

    Returns:
        Tuple of (messages list, total count matching filters)
    """
    from church_sms.models import Message

    logger.debug(
        f"Filters: conversation_id={conversation_id}, member_id={member_id}, "
        f"direction={direction}, from={from_number}"
    )

    query = db.query(Message)

    if conversation_id is not None:
        query = query.filter(Message.conversation_id == conversation_id)
    if member_id is not None:
        query = query.filter(Message.member_id == member_id)
    if direction:
        query = query.filter(Message.direction == direction)
    if from_number:
        query = query.filter(Message.from_number == from_number)

    total = query.count()

    # Deterministic ordering: arrival time, then id
    query = query.order_by(Message.created_at.asc(), Message.id.asc())

    messages = query.offset(offset).limit(limit).all()
    logger.info(f"Retrieved {len(messages)} of {total} total messages")

    return messages, total


def get_stats(db: Session) -> dict:
    """
    Get message statistics for the /stats endpoint.

    Computes:
    - total_messages / inbound_messages / unmatched_messages
    - conversations_count
    - messages_per_conversation: top 10 conversations by message count (desc)
    - first_message_ts / last_message_ts (null if no messages)
    """
    from church_sms.models import Conversation, Message

    logger.info("Computing message statistics")

    total_messages = db.query(func.count(Message.id)).scalar() or 0
    inbound_messages = (
        db.query(func.count(Message.id)).filter(Message.direction == "inbound").scalar() or 0
    )
    unmatched_messages = (
        db.query(func.count(Message.id)).filter(Message.member_id.is_(None)).scalar() or 0
    )
    conversations_count = db.query(func.count(Conversation.id)).scalar() or 0

    per_conversation = (
        db.query(
            Message.conversation_id,
            Conversation.title,
            func.count(Message.id).label("count"),
        )
        .join(Conversation, Conversation.id == Message.conversation_id)
        .group_by(Message.conversation_id, Conversation.title)
        .order_by(func.count(Message.id).desc(), Message.conversation_id.asc())
        .limit(10)
        .all()
    )
    messages_per_conversation = [
        {"conversation_id": row.conversation_id, "title": row.title, "count": row.count}
        for row in per_conversation
    ]

    first_message_ts = db.query(func.min(Message.created_at)).scalar()
    last_message_ts = db.query(func.max(Message.created_at)).scalar()

    logger.info(f"Stats computed: {total_messages} messages, {conversations_count} conversations")

    return {
        "total_messages": total_messages,
        "inbound_messages": inbound_messages,
        "unmatched_messages": unmatched_messages,
        "conversations_count": conversations_count,
        "messages_per_conversation": messages_per_conversation,
        "first_message_ts": first_message_ts,
        "last_message_ts": last_message_ts,
    }
