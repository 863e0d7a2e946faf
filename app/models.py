# In app/models.py
import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()

CONTENT_TYPES = ("handwritten", "textbook", "diagram")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, default="")
    hashed_password = Column(String, nullable=True)  # NULL for Google-only accounts
    google_id = Column(String, unique=True, index=True, nullable=True)
    avatar = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    analyses = relationship("Analysis", back_populates="owner", cascade="all, delete-orphan")
    chats = relationship("Chat", back_populates="owner", cascade="all, delete-orphan")


class Analysis(Base):
    __tablename__ = "analyses"
    __table_args__ = (
        CheckConstraint(
            "content_type IN ('handwritten', 'textbook', 'diagram')",
            name="ck_analyses_content_type",
        ),
    )
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    image_url = Column(String, nullable=False)
    user_prompt = Column(Text, nullable=False)
    content_type = Column(String, nullable=False)
    extracted_text = Column(Text, nullable=False, default="")
    result_json = Column(Text, nullable=False, default="{}")  # Storing JSON as a string
    # Denormalised from result_json for search and aggregation
    summary = Column(Text, nullable=False, default="")
    key_topics_json = Column(Text, nullable=False, default="[]")
    videos_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    owner = relationship("User", back_populates="analyses")
    chats = relationship("Chat", back_populates="analysis", cascade="all, delete-orphan")


class Chat(Base):
    __tablename__ = "chats"
    id = Column(Integer, primary_key=True, index=True)
    analysis_id = Column(Integer, ForeignKey("analyses.id"), unique=True, index=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    analysis = relationship("Analysis", back_populates="chats")
    owner = relationship("User", back_populates="chats")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), index=True, nullable=False)
    role = Column(String, nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="text")  # text | mindmap
    mind_map_json = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=_utcnow)
    chat = relationship("Chat", back_populates="messages")
