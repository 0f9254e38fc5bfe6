"""Durable backlog of missed facets and curveballs awaiting review."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger

from config import SchedulerSettings
from db.database import InvariantViolation, idea_key, reading, transaction
from models.lesson import Question
from models.review_queue import DailyReview, IncorrectResponse, QueueStatistics, ReviewQueueItem
from models.taxonomy import Difficulty, FacetTag, QuestionType
from utils.questions import get_questions
from utils.timestamps import from_db, to_db, utc_now


def _row_to_item(row) -> ReviewQueueItem:
    return ReviewQueueItem(
        id=row["id"],
        idea_id=row["idea_id"],
        book_id=row["book_id"],
        idea_title=row["idea_title"],
        book_title=row["book_title"],
        question_type=QuestionType(row["question_type"]),
        concept_key=row["concept_key"],
        difficulty=Difficulty(row["difficulty"]),
        facet_tag=FacetTag(row["facet_tag"]),
        seed_question_text=row["seed_question_text"],
        is_curveball=bool(row["is_curveball"]),
        added_at=from_db(row["added_at"]),
        is_completed=bool(row["is_completed"]),
        completed_at=from_db(row["completed_at"]),
    )


def select_daily(
    pending: Sequence[ReviewQueueItem], mcq_cap: int, open_cap: int
) -> Tuple[List[ReviewQueueItem], List[ReviewQueueItem]]:
    """Pick today's review items from pending items ordered oldest first.

    At most one curveball goes first and counts toward its bucket's cap.
    No two picked items share (idea, concept).
    """
    mcqs: List[ReviewQueueItem] = []
    open_ended: List[ReviewQueueItem] = []
    taken: Set[Tuple[str, str]] = set()

    curveball = next((item for item in pending if item.is_curveball), None)
    if curveball is not None:
        bucket = mcqs if curveball.question_type.is_choice else open_ended
        bucket.append(curveball)
        taken.add(curveball.concept_identity)

    # leftover curveballs lead their own pool; sorted() is stable so age order holds
    for item in sorted(pending, key=lambda queued: not queued.is_curveball):
        if item is curveball:
            continue
        if item.concept_identity in taken:
            continue
        if item.question_type.is_choice:
            bucket, cap = mcqs, mcq_cap
        else:
            bucket, cap = open_ended, open_cap
        if len(bucket) >= cap:
            continue
        bucket.append(item)
        taken.add(item.concept_identity)
    return mcqs, open_ended


class ReviewQueue:
    def __init__(
        self,
        conn,
        settings: SchedulerSettings = SchedulerSettings(),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.conn = conn
        self.settings = settings
        self.clock = clock

    def pending_items(self, book_id: str, idea_id: Optional[str] = None) -> List[ReviewQueueItem]:
        query = "SELECT * FROM review_queue WHERE book_id = ? AND is_completed = 0"
        params: list = [book_id]
        if idea_id is not None:
            query += " AND idea_id = ?"
            params.append(idea_id)
        query += " ORDER BY added_at ASC, id ASC"
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            return [_row_to_item(row) for row in cursor.fetchall()]

    def get_items(self, item_ids: Iterable[int]) -> List[ReviewQueueItem]:
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(f"SELECT * FROM review_queue WHERE id IN ({placeholders}) ORDER BY id ASC", ids)
            return [_row_to_item(row) for row in cursor.fetchall()]

    def has_pending_curveball(self, idea_id: str, book_id: str) -> bool:
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT 1 FROM review_queue
                WHERE idea_id = ? AND book_id = ? AND is_curveball = 1 AND is_completed = 0
                LIMIT 1
                """,
                (idea_id, book_id),
            )
            return cursor.fetchone() is not None

    def enqueue_mistakes(
        self,
        idea_id: str,
        book_id: str,
        idea_title: str,
        book_title: str,
        incorrect_responses: Iterable[IncorrectResponse],
        questions: Optional[Dict[str, Question]] = None,
    ) -> List[ReviewQueueItem]:
        """Queue one correction per missed concept, skipping concepts already pending."""
        responses = list(incorrect_responses)
        if questions is None:
            questions = get_questions(self.conn, [r.question_id for r in responses])

        added: List[ReviewQueueItem] = []
        with transaction(self.conn, key=idea_key(book_id, idea_id)):
            pending = self._pending_corrections(idea_id, book_id)
            for response in responses:
                question = questions.get(response.question_id)
                if question is None:
                    logger.warning("Cannot queue unknown question {} for idea {}", response.question_id, idea_id)
                    continue
                identity = question.concept_key
                if identity in pending:
                    logger.debug("Concept {} already pending for idea {}", question.concept_key, idea_id)
                    continue
                item = ReviewQueueItem(
                    idea_id=idea_id,
                    book_id=book_id,
                    idea_title=idea_title,
                    book_title=book_title,
                    question_type=question.question_type,
                    concept_key=question.concept_key,
                    difficulty=question.difficulty,
                    facet_tag=question.facet_tag,
                    seed_question_text=question.text,
                    added_at=self.clock(),
                )
                self._insert(item)
                pending[identity] = 1
                added.append(item)
        if added:
            logger.info("Queued {} correction(s) for idea {} in book {}", len(added), idea_id, book_id)
        return added

    def enqueue_curveball(self, item: ReviewQueueItem) -> Optional[ReviewQueueItem]:
        """Insert a curveball item unless the idea already has one pending."""
        if not item.is_curveball:
            raise ValueError("enqueue_curveball expects a curveball item")
        with transaction(self.conn, key=idea_key(item.book_id, item.idea_id)):
            if self.has_pending_curveball(item.idea_id, item.book_id):
                return None
            self._insert(item)
        logger.info(
            "Curveball queued for idea {}: {} ({})",
            item.idea_id,
            item.facet_tag.value,
            item.question_type.value,
        )
        return item

    def daily_review_items(self, book_id: str) -> DailyReview:
        mcqs, open_ended = select_daily(
            self.pending_items(book_id),
            mcq_cap=self.settings.mcq_cap,
            open_cap=self.settings.open_cap,
        )
        return DailyReview(mcqs=mcqs, open_ended=open_ended)

    def mark_completed(self, items: Iterable[ReviewQueueItem]) -> int:
        """Flip items to completed. Already completed items are left alone."""
        items = [item for item in items if item.id is not None]
        if not items:
            return 0
        now = self.clock()
        changed = 0
        by_idea: Dict[Tuple[str, str], List[ReviewQueueItem]] = {}
        for item in items:
            by_idea.setdefault((item.book_id, item.idea_id), []).append(item)
        for (book_id, idea_id), group in by_idea.items():
            with transaction(self.conn, key=idea_key(book_id, idea_id)):
                cursor = self.conn.cursor()
                for item in group:
                    cursor.execute(
                        """
                        UPDATE review_queue SET is_completed = 1, completed_at = ?
                        WHERE id = ? AND is_completed = 0
                        """,
                        (to_db(now), item.id),
                    )
                    if cursor.rowcount:
                        changed += 1
                    item.is_completed = True
                    item.completed_at = item.completed_at or now
        logger.debug("Marked {} review item(s) completed", changed)
        return changed

    def queue_statistics(self, book_id: str) -> QueueStatistics:
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT
                    SUM(CASE WHEN question_type != 'OpenResponse' THEN 1 ELSE 0 END) AS mcq,
                    SUM(CASE WHEN question_type = 'OpenResponse' THEN 1 ELSE 0 END) AS open_ended
                FROM review_queue
                WHERE book_id = ? AND is_completed = 0
                """,
                (book_id,),
            )
            row = cursor.fetchone()
        return QueueStatistics(
            total_pending_mcq=int(row["mcq"] or 0),
            total_pending_open_ended=int(row["open_ended"] or 0),
        )

    def correction_candidates(
        self, book_id: str, limit: int, exclude_idea_ids: Iterable[str] = ()
    ) -> List[ReviewQueueItem]:
        """Oldest pending corrections with distinct concepts, for mixing into a lesson."""
        if limit <= 0:
            return []
        excluded = set(exclude_idea_ids)
        picked: List[ReviewQueueItem] = []
        seen: Set[Tuple[str, str]] = set()
        for item in self.pending_items(book_id):
            if item.is_curveball or item.idea_id in excluded:
                continue
            if item.concept_identity in seen:
                continue
            seen.add(item.concept_identity)
            picked.append(item)
            if len(picked) >= limit:
                break
        return picked

    def _pending_corrections(self, idea_id: str, book_id: str) -> Dict[str, int]:
        pending: Dict[str, int] = {}
        for item in self.pending_items(book_id, idea_id=idea_id):
            if item.is_curveball:
                continue
            identity = item.concept_key
            pending[identity] = pending.get(identity, 0) + 1
        duplicated = [identity for identity, count in pending.items() if count > 1]
        if duplicated:
            raise InvariantViolation(
                f"duplicate pending review items for idea {idea_id}: {duplicated}"
            )
        return pending

    def _insert(self, item: ReviewQueueItem) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO review_queue (
                idea_id, book_id, idea_title, book_title, question_type, concept_key,
                difficulty, facet_tag, seed_question_text, is_curveball, added_at,
                is_completed, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.idea_id,
                item.book_id,
                item.idea_title,
                item.book_title,
                item.question_type.value,
                item.concept_key,
                item.difficulty.value,
                item.facet_tag.value,
                item.seed_question_text,
                1 if item.is_curveball else 0,
                to_db(item.added_at),
                1 if item.is_completed else 0,
                to_db(item.completed_at),
            ),
        )
        item.id = cursor.lastrowid
