"""Conversation, message and summary models."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Index, Integer, Uuid
from sqlalchemy.orm import relationship
from staffline.database import Base


class Conversation(Base):
    """The single running conversation between a client and the assistant."""

    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, unique=True)

    message_count = Column(Integer, default=0, nullable=False)
    needs_summary = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Conversation {self.id} messages={self.message_count}>"


class Message(Base):
    """One turn in a conversation."""

    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)

    role = Column(String(20), nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message {self.role}>"


class ConversationSummary(Base):
    """Short LLM-written digest of a stretch of conversation."""

    __tablename__ = "conversation_summaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)

    summary = Column(Text, nullable=False)
    message_count = Column(Integer)  # conversation size when summarised

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ConversationSummary {self.conversation_id}>"
