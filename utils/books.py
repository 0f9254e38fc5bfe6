from __future__ import annotations

from typing import List, Optional

from loguru import logger

from db.database import book_key, reading, transaction
from models.book import Book, BookCreate, Idea


def register_book(conn, payload: BookCreate) -> Book:
    """Store a book and its ordered ideas. Re-registering replaces the idea order."""
    with transaction(conn, key=book_key(payload.id)):
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT INTO books (id, title) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET title = excluded.title
            """,
            (payload.id, payload.title),
        )
        cursor.execute("DELETE FROM ideas WHERE book_id = ?", (payload.id,))
        cursor.executemany(
            "INSERT INTO ideas (id, book_id, title, description, position) VALUES (?, ?, ?, ?, ?)",
            [
                (stub.id, payload.id, stub.title, stub.description, position)
                for position, stub in enumerate(payload.ideas, start=1)
            ],
        )
    logger.info("Registered book {} with {} ideas", payload.id, len(payload.ideas))
    return get_book(conn, payload.id)


def get_book(conn, book_id: str) -> Optional[Book]:
    with reading():
        cursor = conn.cursor()
        cursor.execute("SELECT id, title FROM books WHERE id = ?", (book_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return Book(id=row["id"], title=row["title"], ideas=list_ideas(conn, book_id))


def list_ideas(conn, book_id: str) -> List[Idea]:
    with reading():
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT id, book_id, title, description, position
            FROM ideas
            WHERE book_id = ?
            ORDER BY position ASC
            """,
            (book_id,),
        )
        return [Idea(**dict(row)) for row in cursor.fetchall()]


def get_idea(conn, book_id: str, idea_id: str) -> Optional[Idea]:
    with reading():
        cursor = conn.cursor()
        cursor.execute(
            "SELECT id, book_id, title, description, position FROM ideas WHERE book_id = ? AND id = ?",
            (book_id, idea_id),
        )
        row = cursor.fetchone()
        return Idea(**dict(row)) if row else None


def idea_for_lesson(conn, book_id: str, lesson_number: int) -> Optional[Idea]:
    """Lessons are 1-indexed and map onto ideas in book order."""
    if lesson_number < 1:
        return None
    with reading():
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT id, book_id, title, description, position
            FROM ideas
            WHERE book_id = ?
            ORDER BY position ASC
            LIMIT 1 OFFSET ?
            """,
            (book_id, lesson_number - 1),
        )
        row = cursor.fetchone()
        return Idea(**dict(row)) if row else None


def count_ideas(conn, book_id: str) -> int:
    with reading():
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM ideas WHERE book_id = ?", (book_id,))
        return int(cursor.fetchone()[0] or 0)


def idea_title(conn, book_id: str, idea_id: str) -> Optional[str]:
    idea = get_idea(conn, book_id, idea_id)
    return idea.title if idea else None
