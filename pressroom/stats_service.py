"""Admin dashboard statistics snapshot."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pressroom.config import DashboardSettings, get_dashboard_settings
from pressroom.db.models import Article, ArticleStatus, Comment, User
from pressroom.time_utils import ensure_utc, start_of_day, trailing_days, utc_now, weekday_label


def _count(session: Session, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    for criterion in criteria:
        stmt = stmt.where(criterion)
    return int(session.scalar(stmt) or 0)


def build_user_chart(
    session: Session,
    *,
    now: datetime,
    settings: DashboardSettings,
) -> List[Dict[str, Any]]:
    """Return daily new-user counts for the trailing window, oldest first."""

    tz = ZoneInfo(settings.timezone)
    days = trailing_days(now, settings.chart_days, tz)
    window_start = start_of_day(days[0], tz)
    created = session.scalars(select(User.created_at).where(User.created_at >= window_start)).all()
    per_day = Counter(ensure_utc(value).astimezone(tz).date() for value in created if value is not None)
    return [
        {"name": weekday_label(day, settings.weekday_locale), "users": per_day.get(day, 0)}
        for day in days
    ]


def get_admin_dashboard_stats(
    session: Session,
    *,
    now: Optional[datetime] = None,
    settings: Optional[DashboardSettings] = None,
) -> Dict[str, Any]:
    """Compute the dashboard snapshot pushed on the admin stats stream."""

    settings = settings or get_dashboard_settings()
    now = ensure_utc(now) if now is not None else utc_now()
    limit = settings.latest_limit

    latest_users = session.execute(
        select(User.id, User.name, User.email)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
    ).all()
    latest_articles = session.execute(
        select(Article.id, Article.title, Article.status, User.name)
        .outerjoin(User, Article.author_id == User.id)
        .order_by(Article.created_at.desc(), Article.id.desc())
        .limit(limit)
    ).all()

    return {
        "totalUsers": _count(session, User),
        "totalArticles": _count(session, Article, Article.status == ArticleStatus.APPROVED.value),
        "pendingArticles": _count(session, Article, Article.status == ArticleStatus.PENDING.value),
        "totalComments": _count(session, Comment),
        "userChartData": build_user_chart(session, now=now, settings=settings),
        "latestUsers": [
            {"id": row.id, "name": row.name, "email": row.email} for row in latest_users
        ],
        "latestArticles": [
            {
                "id": row.id,
                "title": row.title,
                "status": row.status,
                "author": {"name": row.name},
            }
            for row in latest_articles
        ],
    }


__all__ = ["build_user_chart", "get_admin_dashboard_stats"]
