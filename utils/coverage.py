"""Coverage tracking: which facets of each idea the learner has demonstrated."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from loguru import logger

from config import SchedulerSettings
from db.database import InvariantViolation, idea_key, reading, transaction
from models.coverage import Attempt, IdeaCoverage, MissedFacetRecord
from models.taxonomy import FacetTag
from utils.spaced_review import initialize_review_state
from utils.timestamps import from_db, to_db, utc_now


def coverage_percent(covered: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round((covered / total) * 100, 1)


def encode_facets(facets: Iterable[FacetTag]) -> str:
    return json.dumps([facet.value for facet in sorted(facets, key=lambda f: f.rank)])


def decode_facets(raw: Optional[str]) -> set:
    facets = set()
    for value in json.loads(raw or "[]"):
        try:
            facets.add(FacetTag(value))
        except ValueError:
            logger.warning("Ignoring unknown facet tag {!r} in stored coverage", value)
    return facets


class CoverageTracker:
    """Per-idea coverage records backed by the idea_coverage/missed_facets tables."""

    def __init__(
        self,
        conn,
        settings: SchedulerSettings = SchedulerSettings(),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.conn = conn
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------ reads

    def get(self, idea_id: str, book_id: str) -> Optional[IdeaCoverage]:
        rows = self._rows_for(idea_id, book_id)
        if len(rows) > 1:
            raise InvariantViolation(
                f"{len(rows)} coverage records for idea {idea_id} in book {book_id}"
            )
        return self._load(rows[0]) if rows else None

    def get_or_create(self, idea_id: str, book_id: str) -> IdeaCoverage:
        existing = self.get(idea_id, book_id)
        if existing is not None:
            return existing
        with transaction(self.conn, key=idea_key(book_id, idea_id)):
            # re-check under the lock; another writer may have inserted first
            existing = self.get(idea_id, book_id)
            if existing is not None:
                return existing
            cursor = self.conn.cursor()
            cursor.execute(
                "INSERT INTO idea_coverage (idea_id, book_id) VALUES (?, ?)",
                (idea_id, book_id),
            )
            coverage_id = cursor.lastrowid
        logger.debug("Created coverage record {} for idea {} in book {}", coverage_id, idea_id, book_id)
        return IdeaCoverage(id=coverage_id, idea_id=idea_id, book_id=book_id)

    def list_for_book(self, book_id: str, fully_covered: Optional[bool] = None) -> List[IdeaCoverage]:
        query = "SELECT * FROM idea_coverage WHERE book_id = ?"
        params: list = [book_id]
        if fully_covered is not None:
            query += " AND is_fully_covered = ?"
            params.append(1 if fully_covered else 0)
        query += " ORDER BY id ASC"
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._load(row) for row in rows]

    def book_coverage(self, book_id: str, total_ideas: int) -> float:
        """Share of the book's ideas that are fully covered, as a percentage."""
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(DISTINCT idea_id)
                FROM idea_coverage
                WHERE book_id = ? AND is_fully_covered = 1
                """,
                (book_id,),
            )
            fully_covered = int(cursor.fetchone()[0] or 0)
        return coverage_percent(fully_covered, total_ideas)

    def mistakes_for_correction(self, book_id: str, limit: int = 2) -> List[Tuple[str, List[MissedFacetRecord]]]:
        """Uncorrected missed facets per idea, at most ``limit`` per idea."""
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT * FROM idea_coverage
                WHERE book_id = ? AND mistake_count > mistakes_corrected
                ORDER BY id ASC
                """,
                (book_id,),
            )
            rows = cursor.fetchall()
        result = []
        for row in rows:
            uncorrected = self._load(row).uncorrected_mistakes
            if uncorrected:
                result.append((row["idea_id"], uncorrected[:limit]))
        return result

    # ----------------------------------------------------------------- writes

    def record_attempt(
        self,
        coverage: IdeaCoverage,
        question_id: str,
        concept_key: str,
        facet_tag: FacetTag,
        is_correct: bool,
        question_text: str,
    ) -> IdeaCoverage:
        attempt = Attempt(
            question_id=question_id,
            concept_key=concept_key,
            facet_tag=facet_tag,
            is_correct=is_correct,
            question_text=question_text,
        )
        return self._apply(coverage, [attempt])

    def record_lesson(self, idea_id: str, book_id: str, attempts: Iterable[Attempt]) -> IdeaCoverage:
        """Apply a whole session's answers for one idea in a single transaction."""
        coverage = self.get_or_create(idea_id, book_id)
        return self._apply(coverage, list(attempts))

    def save(self, coverage: IdeaCoverage) -> None:
        with transaction(self.conn, key=idea_key(coverage.book_id, coverage.idea_id)):
            self._write(coverage)

    def _apply(self, coverage: IdeaCoverage, attempts: List[Attempt]) -> IdeaCoverage:
        now = self.clock()
        with transaction(self.conn, key=idea_key(coverage.book_id, coverage.idea_id)):
            # work on the stored copy so concurrent writers for this idea cannot interleave
            fresh = self.get(coverage.idea_id, coverage.book_id)
            if fresh is None:
                fresh = coverage.model_copy(deep=True)
            newly_covered = False
            for attempt in attempts:
                logger.debug(
                    "Attempt on idea {}: facet={} concept={} correct={}",
                    fresh.idea_id,
                    attempt.facet_tag.value,
                    attempt.concept_key,
                    attempt.is_correct,
                )
                newly_covered = fresh.record_attempt(
                    attempt.question_id,
                    attempt.concept_key,
                    attempt.facet_tag,
                    attempt.is_correct,
                    attempt.question_text,
                    now=now,
                    curveball_delay_days=self.settings.curveball_delay_days,
                ) or newly_covered
            self._write(fresh)
            if newly_covered:
                initialize_review_state(self.conn, fresh.idea_id, fresh.book_id, today=now.date())
        if newly_covered:
            logger.info(
                "Idea {} fully covered; curveball due {}",
                fresh.idea_id,
                fresh.curveball_due_at.isoformat() if fresh.curveball_due_at else None,
            )
        for name in IdeaCoverage.model_fields:
            setattr(coverage, name, getattr(fresh, name))
        return coverage

    def _write(self, coverage: IdeaCoverage) -> None:
        cursor = self.conn.cursor()
        values = (
            coverage.total_seen,
            coverage.total_correct,
            coverage.mistake_count,
            coverage.mistakes_corrected,
            encode_facets(coverage.covered_categories),
            coverage.coverage_percentage,
            1 if coverage.is_fully_covered else 0,
            coverage.current_accuracy,
            to_db(coverage.first_attempt_at),
            to_db(coverage.last_attempt_at),
            to_db(coverage.covered_at),
            to_db(coverage.curveball_due_at),
            1 if coverage.curveball_passed else 0,
            to_db(coverage.curveball_passed_at),
        )
        if coverage.id is None:
            cursor.execute(
                """
                INSERT INTO idea_coverage (
                    total_seen, total_correct, mistake_count, mistakes_corrected,
                    covered_categories, coverage_percentage, is_fully_covered, current_accuracy,
                    first_attempt_at, last_attempt_at, covered_at,
                    curveball_due_at, curveball_passed, curveball_passed_at,
                    idea_id, book_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values + (coverage.idea_id, coverage.book_id),
            )
            coverage.id = cursor.lastrowid
        else:
            cursor.execute(
                """
                UPDATE idea_coverage SET
                    total_seen = ?, total_correct = ?, mistake_count = ?, mistakes_corrected = ?,
                    covered_categories = ?, coverage_percentage = ?, is_fully_covered = ?,
                    current_accuracy = ?, first_attempt_at = ?, last_attempt_at = ?, covered_at = ?,
                    curveball_due_at = ?, curveball_passed = ?, curveball_passed_at = ?
                WHERE id = ?
                """,
                values + (coverage.id,),
            )
        for record in coverage.missed_questions:
            self._write_missed(cursor, coverage.id, record)

    @staticmethod
    def _write_missed(cursor, coverage_id: int, record: MissedFacetRecord) -> None:
        if record.id is None:
            cursor.execute(
                """
                INSERT INTO missed_facets (
                    coverage_id, question_id, concept_key, question_text,
                    first_missed_at, retry_count, is_corrected, corrected_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    coverage_id,
                    record.question_id,
                    record.concept_key,
                    record.question_text,
                    to_db(record.first_missed_at),
                    record.retry_count,
                    1 if record.is_corrected else 0,
                    to_db(record.corrected_at),
                ),
            )
            record.id = cursor.lastrowid
            return
        cursor.execute(
            """
            UPDATE missed_facets
            SET retry_count = ?, is_corrected = ?, corrected_at = ?
            WHERE id = ?
            """,
            (record.retry_count, 1 if record.is_corrected else 0, to_db(record.corrected_at), record.id),
        )

    # ---------------------------------------------------------------- loading

    def _rows_for(self, idea_id: str, book_id: str) -> list:
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM idea_coverage WHERE idea_id = ? AND book_id = ? ORDER BY id ASC",
                (idea_id, book_id),
            )
            return cursor.fetchall()

    def _load(self, row) -> IdeaCoverage:
        with reading():
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT * FROM missed_facets WHERE coverage_id = ? ORDER BY id ASC",
                (row["id"],),
            )
            missed_rows = cursor.fetchall()
        return IdeaCoverage(
            id=row["id"],
            idea_id=row["idea_id"],
            book_id=row["book_id"],
            total_seen=row["total_seen"],
            total_correct=row["total_correct"],
            mistake_count=row["mistake_count"],
            mistakes_corrected=row["mistakes_corrected"],
            covered_categories=decode_facets(row["covered_categories"]),
            coverage_percentage=row["coverage_percentage"],
            is_fully_covered=bool(row["is_fully_covered"]),
            current_accuracy=row["current_accuracy"],
            first_attempt_at=from_db(row["first_attempt_at"]),
            last_attempt_at=from_db(row["last_attempt_at"]),
            covered_at=from_db(row["covered_at"]),
            curveball_due_at=from_db(row["curveball_due_at"]),
            curveball_passed=bool(row["curveball_passed"]),
            curveball_passed_at=from_db(row["curveball_passed_at"]),
            missed_questions=[
                MissedFacetRecord(
                    id=missed["id"],
                    question_id=missed["question_id"],
                    concept_key=missed["concept_key"],
                    question_text=missed["question_text"],
                    first_missed_at=from_db(missed["first_missed_at"]),
                    retry_count=missed["retry_count"],
                    is_corrected=bool(missed["is_corrected"]),
                    corrected_at=from_db(missed["corrected_at"]),
                )
                for missed in missed_rows
            ],
        )

