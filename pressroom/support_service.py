"""Support ticket snapshot for the admin ticket stream."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from pressroom.db.models import (
    SupportMessage,
    SupportTicket,
    SupportTicketPriority,
    SupportTicketStatus,
    User,
)
from pressroom.time_utils import isoformat_utc

SUPPORT_STATUS_TEXTS: Dict[str, str] = {
    SupportTicketStatus.OPEN.value: "در انتظار پاسخ",
    SupportTicketStatus.ANSWERED.value: "پاسخ داده شده",
    SupportTicketStatus.CLOSED.value: "بسته شده",
}

SUPPORT_PRIORITY_TEXTS: Dict[str, str] = {
    SupportTicketPriority.LOW.value: "کم",
    SupportTicketPriority.NORMAL.value: "معمولی",
    SupportTicketPriority.HIGH.value: "فوری",
}


def build_ticket_filters(
    status: Optional[str],
    priority: Optional[str],
    search: Optional[str],
) -> List[Any]:
    """Translate query parameters into SQL criteria; unknown values are ignored."""

    criteria: List[Any] = []
    if status and status in SUPPORT_STATUS_TEXTS:
        criteria.append(SupportTicket.status == status)
    if priority and priority in SUPPORT_PRIORITY_TEXTS:
        criteria.append(SupportTicket.priority == priority)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        criteria.append(
            or_(
                SupportTicket.title.ilike(pattern),
                SupportTicket.user.has(or_(User.name.ilike(pattern), User.email.ilike(pattern))),
            )
        )
    return criteria


def list_support_tickets(
    session: Session,
    *,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return every matching ticket, newest first, with its conversation."""

    stmt = (
        select(SupportTicket)
        .options(
            selectinload(SupportTicket.user),
            selectinload(SupportTicket.messages).selectinload(SupportMessage.author),
            selectinload(SupportTicket.messages).selectinload(SupportMessage.attachments),
        )
        .order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
    )
    for criterion in build_ticket_filters(status, priority, search):
        stmt = stmt.where(criterion)
    return [_ticket_to_item(ticket) for ticket in session.scalars(stmt).all()]


def _user_summary(user: Optional[User], *, include_role: bool = False) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    summary: Dict[str, Any] = {"id": user.id, "name": user.name, "avatarUrl": user.avatar_url}
    if include_role:
        summary["role"] = user.role
    else:
        summary["email"] = user.email
    return summary


def _ticket_to_item(ticket: SupportTicket) -> Dict[str, Any]:
    messages = sorted(ticket.messages, key=lambda m: (isoformat_utc(m.created_at) or "", m.id))
    return {
        "id": ticket.id,
        "title": ticket.title,
        "status": ticket.status,
        "priority": ticket.priority,
        "statusLabel": SUPPORT_STATUS_TEXTS.get(ticket.status, ticket.status),
        "priorityLabel": SUPPORT_PRIORITY_TEXTS.get(ticket.priority, ticket.priority),
        "userId": ticket.user_id,
        "createdAt": isoformat_utc(ticket.created_at),
        "updatedAt": isoformat_utc(ticket.updated_at),
        "user": _user_summary(ticket.user),
        "messages": [
            {
                "id": message.id,
                "body": message.body,
                "createdAt": isoformat_utc(message.created_at),
                "author": _user_summary(message.author, include_role=True),
                "attachments": [
                    {"id": item.id, "fileName": item.file_name, "url": item.url}
                    for item in message.attachments
                ],
            }
            for message in messages
        ],
    }


__all__ = [
    "SUPPORT_STATUS_TEXTS",
    "SUPPORT_PRIORITY_TEXTS",
    "build_ticket_filters",
    "list_support_tickets",
]
