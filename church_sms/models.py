"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from church_sms.storage import Base, utcnow


class Member(Base):
    """
    A church member / contact.

    Table: members
    The phone column is free-form; numbers are stored in whatever format they were entered.
    """
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    firstname = Column(String, nullable=True)
    lastname = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.firstname or ''} {self.lastname or ''}".strip()


class GroupMember(Base):
    """(group, member) roster pairs."""
    __tablename__ = "group_members"

    group_id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id"), primary_key=True, index=True)


class Conversation(Base):
    """
    An SMS thread: direct, tied to a group roster, or a multi-recipient broadcast.

    Table: sms_conversations
    """
    __tablename__ = "sms_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    conversation_type = Column(String, nullable=False, default="general")
    group_id = Column(Integer, nullable=True, index=True)
    status = Column(String, nullable=False, default="active", index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class Message(Base):
    """
    One inbound or outbound SMS.

    Table: sms_messages
    twilio_sid is indexed but intentionally not unique: provider redeliveries insert a new row
    unless ENFORCE_UNIQUE_MESSAGE_SID is switched on.
    """
    __tablename__ = "sms_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    twilio_sid = Column(String, nullable=True, index=True)
    direction = Column(String, nullable=False)
    from_number = Column(String, nullable=True, index=True)
    to_number = Column(String, nullable=True, index=True)
    body = Column(Text, nullable=True)
    status = Column(String, nullable=False)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)
    conversation_id = Column(Integer, ForeignKey("sms_conversations.id"), nullable=True, index=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
