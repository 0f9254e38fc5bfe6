"""Spaced review of fully covered ideas.

Each idea gets an SM-2 review state the first time every facet is covered.
The lesson composer asks for due ideas, most overdue first.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from loguru import logger

from db.database import idea_key, reading, transaction
from utils.sm2 import grade_from_score, map_grade_to_quality, update_sm2


@dataclass(frozen=True)
class IdeaReviewState:
    idea_id: str
    book_id: str
    interval_days: int
    ease_factor: float
    streak: int
    due_date: str
    last_review_ts: Optional[str] = None


def get_review_state(conn, idea_id: str, book_id: str) -> Optional[IdeaReviewState]:
    with reading():
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT idea_id, book_id, interval_days, ease_factor, streak, due_date, last_review_ts
            FROM idea_reviews
            WHERE idea_id = ? AND book_id = ?
            """,
            (idea_id, book_id),
        )
        row = cursor.fetchone()
    if not row:
        return None
    return IdeaReviewState(
        idea_id=row["idea_id"],
        book_id=row["book_id"],
        interval_days=int(row["interval_days"]),
        ease_factor=float(row["ease_factor"]),
        streak=int(row["streak"]),
        due_date=row["due_date"],
        last_review_ts=row["last_review_ts"],
    )


def upsert_review_state(conn, state: IdeaReviewState) -> None:
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO idea_reviews (
            idea_id,
            book_id,
            interval_days,
            ease_factor,
            streak,
            due_date,
            last_review_ts
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(idea_id, book_id) DO UPDATE SET
            interval_days = excluded.interval_days,
            ease_factor = excluded.ease_factor,
            streak = excluded.streak,
            due_date = excluded.due_date,
            last_review_ts = excluded.last_review_ts
        """,
        (
            state.idea_id,
            state.book_id,
            state.interval_days,
            state.ease_factor,
            state.streak,
            state.due_date,
            state.last_review_ts,
        ),
    )


def initialize_review_state(conn, idea_id: str, book_id: str, today: Optional[date] = None) -> IdeaReviewState:
    """Start reviews for a newly covered idea: first review due tomorrow."""
    existing = get_review_state(conn, idea_id, book_id)
    if existing:
        return existing
    anchor = today or date.today()
    state = IdeaReviewState(
        idea_id=idea_id,
        book_id=book_id,
        interval_days=1,
        ease_factor=2.5,
        streak=0,
        due_date=(anchor + timedelta(days=1)).isoformat(),
    )
    with transaction(conn, key=idea_key(book_id, idea_id)):
        upsert_review_state(conn, state)
    logger.info("Spaced review started for idea {} (due {})", idea_id, state.due_date)
    return state


def record_review(
    conn,
    idea_id: str,
    book_id: str,
    correct: int,
    total: int,
    today: Optional[date] = None,
) -> Optional[IdeaReviewState]:
    """Advance an idea's review state from one session's review answers."""
    current = get_review_state(conn, idea_id, book_id)
    if current is None:
        return None
    anchor = today or date.today()
    grade = grade_from_score(correct, total)
    new_interval, new_ef, new_streak, new_due = update_sm2(
        current.interval_days,
        current.ease_factor,
        map_grade_to_quality(grade),
        current.streak,
        base_date=anchor,
    )
    state = IdeaReviewState(
        idea_id=idea_id,
        book_id=book_id,
        interval_days=new_interval,
        ease_factor=new_ef,
        streak=new_streak,
        due_date=new_due.isoformat(),
        last_review_ts=anchor.isoformat(),
    )
    with transaction(conn, key=idea_key(book_id, idea_id)):
        upsert_review_state(conn, state)
    logger.debug("Review of idea {} graded {}; next due {}", idea_id, grade, state.due_date)
    return state


def due_ideas(
    conn,
    book_id: str,
    limit: int,
    today: Optional[date] = None,
    exclude: Iterable[str] = (),
) -> List[str]:
    """Ideas whose review is due, most overdue first."""
    if limit <= 0:
        return []
    anchor = (today or date.today()).isoformat()
    excluded = set(exclude)
    with reading():
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT r.idea_id
            FROM idea_reviews r
            JOIN idea_coverage c ON c.idea_id = r.idea_id AND c.book_id = r.book_id
            WHERE r.book_id = ? AND r.due_date <= ? AND c.is_fully_covered = 1
            GROUP BY r.idea_id
            ORDER BY MIN(r.due_date) ASC, r.idea_id ASC
            """,
            (book_id, anchor),
        )
        idea_ids = [row["idea_id"] for row in cursor.fetchall()]
    return [idea_id for idea_id in idea_ids if idea_id not in excluded][:limit]
