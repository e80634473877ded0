"""SQLAlchemy models for the publishing tables the live streams read."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class ArticleStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class NotificationKind(str, enum.Enum):
    LIKE = "LIKE"
    CLAP = "CLAP"
    NEW_FOLLOWER = "NEW_FOLLOWER"
    ARTICLE_APPROVED = "ARTICLE_APPROVED"
    ARTICLE_REJECTED = "ARTICLE_REJECTED"
    SERIES_RELEASE = "SERIES_RELEASE"
    SUBSCRIPTION_UPDATE = "SUBSCRIPTION_UPDATE"


class SupportTicketStatus(str, enum.Enum):
    OPEN = "OPEN"
    ANSWERED = "ANSWERED"
    CLOSED = "CLOSED"


class SupportTicketPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class User(Base):
    __tablename__ = "users"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    name = sa.Column(String, nullable=True)
    email = sa.Column(String, nullable=False, unique=True, index=True)
    password_hash = sa.Column(String, nullable=True)
    avatar_url = sa.Column(String, nullable=True)
    role = sa.Column(String, nullable=False, server_default=sa.text("'USER'"), default=UserRole.USER.value)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )

    __table_args__ = (
        sa.Index("idx_users_created", "created_at"),
    )


class Article(Base):
    __tablename__ = "articles"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    title = sa.Column(String, nullable=False)
    slug = sa.Column(String, nullable=True, unique=True)
    status = sa.Column(String, nullable=False, server_default=sa.text("'PENDING'"), default=ArticleStatus.PENDING.value)
    author_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )

    author = relationship("User")

    __table_args__ = (
        sa.Index("idx_articles_status", "status"),
        sa.Index("idx_articles_created", "created_at"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    content = sa.Column(Text, nullable=False)
    article_id = sa.Column(Integer, ForeignKey("articles.id"), nullable=False)
    author_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    type = sa.Column(String, nullable=False)
    message = sa.Column(Text, nullable=False)
    is_read = sa.Column(Boolean, nullable=False, server_default=sa.false(), default=False)
    user_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    actor_id = sa.Column(Integer, ForeignKey("users.id"), nullable=True)
    article_id = sa.Column(Integer, ForeignKey("articles.id"), nullable=True)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )

    actor = relationship("User", foreign_keys=[actor_id])
    article = relationship("Article")

    __table_args__ = (
        sa.Index("idx_notifications_user", "user_id", "created_at"),
        sa.Index("idx_notifications_unread", "user_id", "is_read"),
    )


class SupportTicket(Base):
    __tablename__ = "support_tickets"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    title = sa.Column(String, nullable=False)
    status = sa.Column(String, nullable=False, server_default=sa.text("'OPEN'"), default=SupportTicketStatus.OPEN.value)
    priority = sa.Column(
        String,
        nullable=False,
        server_default=sa.text("'NORMAL'"),
        default=SupportTicketPriority.NORMAL.value,
    )
    user_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )
    updated_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    user = relationship("User")
    messages = relationship(
        "SupportMessage",
        order_by="SupportMessage.id",
        back_populates="ticket",
    )

    __table_args__ = (
        sa.Index("idx_support_tickets_status", "status"),
        sa.Index("idx_support_tickets_created", "created_at"),
    )


class SupportMessage(Base):
    __tablename__ = "support_messages"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = sa.Column(Integer, ForeignKey("support_tickets.id"), nullable=False)
    author_id = sa.Column(Integer, ForeignKey("users.id"), nullable=False)
    body = sa.Column(Text, nullable=False)
    created_at = sa.Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        default=_utcnow,
    )

    ticket = relationship("SupportTicket", back_populates="messages")
    author = relationship("User")
    attachments = relationship("SupportAttachment", order_by="SupportAttachment.id")


class SupportAttachment(Base):
    __tablename__ = "support_attachments"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    message_id = sa.Column(Integer, ForeignKey("support_messages.id"), nullable=False)
    file_name = sa.Column(String, nullable=False)
    url = sa.Column(String, nullable=False)


__all__ = [
    "Base",
    "UserRole",
    "ArticleStatus",
    "NotificationKind",
    "SupportTicketStatus",
    "SupportTicketPriority",
    "User",
    "Article",
    "Comment",
    "Notification",
    "SupportTicket",
    "SupportMessage",
    "SupportAttachment",
]
