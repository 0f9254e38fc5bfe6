from __future__ import annotations

import json
from typing import Dict, Iterable, List

from db.database import reading, transaction
from models.lesson import Question, QuestionCategory
from models.taxonomy import Difficulty, FacetTag, QuestionType
from utils.timestamps import from_db, to_db


def save_questions(conn, questions: Iterable[Question]) -> None:
    rows = [
        (
            q.id,
            q.idea_id,
            q.book_id,
            q.question_type.value,
            q.difficulty.value,
            q.facet_tag.value,
            q.text,
            json.dumps(q.options) if q.options is not None else None,
            json.dumps(q.correct_indices) if q.correct_indices is not None else None,
            q.category.value,
            q.queue_item_id,
            to_db(q.created_at),
        )
        for q in questions
    ]
    if not rows:
        return
    with transaction(conn):
        conn.executemany(
            """
            INSERT OR REPLACE INTO questions (
                id, idea_id, book_id, question_type, difficulty, facet_tag, text,
                options, correct_indices, category, queue_item_id, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )


def _row_to_question(row) -> Question:
    return Question(
        id=row["id"],
        idea_id=row["idea_id"],
        book_id=row["book_id"],
        question_type=QuestionType(row["question_type"]),
        difficulty=Difficulty(row["difficulty"]),
        facet_tag=FacetTag(row["facet_tag"]),
        text=row["text"],
        options=json.loads(row["options"]) if row["options"] else None,
        correct_indices=json.loads(row["correct_indices"]) if row["correct_indices"] else None,
        category=QuestionCategory(row["category"]),
        queue_item_id=row["queue_item_id"],
        created_at=from_db(row["created_at"]),
    )


def get_questions(conn, question_ids: Iterable[str]) -> Dict[str, Question]:
    ids: List[str] = list(dict.fromkeys(question_ids))
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    with reading():
        cursor = conn.cursor()
        cursor.execute(f"SELECT * FROM questions WHERE id IN ({placeholders})", ids)
        return {row["id"]: _row_to_question(row) for row in cursor.fetchall()}
