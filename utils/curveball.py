"""Mastery gate: one delayed, harder question before an idea counts as mastered.

Coverage records carry the schedule. This service moves due records into the
review queue and applies the learner's result back onto the coverage record.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from loguru import logger

from config import SchedulerSettings
from db.database import idea_key, transaction
from models.coverage import IdeaCoverage
from models.curveball import CurveballState, force_due, mark_failed, mark_passed, schedule_initial
from models.review_queue import ReviewQueueItem
from models.taxonomy import (
    HIGHEST_ORDER_FACET,
    OPEN_RESPONSE_FACETS,
    Difficulty,
    FacetTag,
    QuestionType,
    concept_key,
)
from utils.books import get_book, idea_title
from utils.coverage import CoverageTracker
from utils.review_queue import ReviewQueue
from utils.timestamps import utc_now

CURVEBALL_DIFFICULTY = Difficulty.HARD
MIN_SEED_LENGTH = 20
FILLER_PHRASES = (
    "all of the above",
    "none of the above",
    "both a and b",
    "option 1",
    "option one",
    "placeholder",
)


def is_poor_seed(text: Optional[str]) -> bool:
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_SEED_LENGTH:
        return True
    lowered = trimmed.lower()
    return any(phrase in lowered for phrase in FILLER_PHRASES)


def select_spec(coverage: IdeaCoverage) -> Tuple[FacetTag, QuestionType]:
    """Facet and question type for an idea's curveball."""
    if coverage.mistake_count == 0 or not coverage.missed_questions:
        return HIGHEST_ORDER_FACET, QuestionType.OPEN_RESPONSE
    most_retried = max(coverage.missed_questions, key=lambda record: record.retry_count)
    facet = most_retried.facet_tag
    if facet is None:
        return HIGHEST_ORDER_FACET, QuestionType.OPEN_RESPONSE
    if facet in OPEN_RESPONSE_FACETS:
        return facet, QuestionType.OPEN_RESPONSE
    return facet, QuestionType.SINGLE_ANSWER


def seed_text(coverage: IdeaCoverage, facet: FacetTag, title: str) -> str:
    """Latest missed question text for the facet, or a generic prompt when it is too thin."""
    fallback = f"Curveball validation for {title}"
    for record in reversed(coverage.missed_questions):
        if record.facet_tag == facet:
            return fallback if is_poor_seed(record.question_text) else record.question_text
    return fallback


class CurveballScheduler:
    def __init__(
        self,
        conn,
        settings: SchedulerSettings = SchedulerSettings(),
        clock: Callable[[], datetime] = utc_now,
        tracker: Optional[CoverageTracker] = None,
        queue: Optional[ReviewQueue] = None,
    ):
        self.conn = conn
        self.settings = settings
        self.clock = clock
        self.tracker = tracker or CoverageTracker(conn, settings, clock)
        self.queue = queue or ReviewQueue(conn, settings, clock)

    @property
    def delay_days(self) -> int:
        return self.settings.curveball_delay_days

    def ensure_queued_if_due(self, book_id: str, now: Optional[datetime] = None) -> List[ReviewQueueItem]:
        """Queue one curveball for every fully covered idea whose gate has come due."""
        now = now or self.clock()
        book = get_book(self.conn, book_id)
        book_title = book.title if book else ""
        queued: List[ReviewQueueItem] = []
        for stale in self.tracker.list_for_book(book_id, fully_covered=True):
            if stale.curveball_passed:
                continue
            with transaction(self.conn, key=idea_key(book_id, stale.idea_id)):
                coverage = self.tracker.get(stale.idea_id, book_id)
                if coverage is None or coverage.curveball_passed:
                    continue
                if coverage.curveball_due_at is None:
                    # records covered before scheduling existed
                    schedule_initial(coverage, coverage.covered_at or now, self.delay_days)
                    self.tracker.save(coverage)
                if coverage.curveball_due_at > now:
                    continue
                if self.queue.has_pending_curveball(coverage.idea_id, book_id):
                    continue
                item = self._build_item(coverage, book_title, now)
                if self.queue.enqueue_curveball(item) is not None:
                    queued.append(item)
        if queued:
            logger.info("Queued {} curveball(s) for book {}", len(queued), book_id)
        return queued

    def _build_item(self, coverage: IdeaCoverage, book_title: str, now: datetime) -> ReviewQueueItem:
        facet, question_type = select_spec(coverage)
        title = idea_title(self.conn, coverage.book_id, coverage.idea_id) or "Idea"
        return ReviewQueueItem(
            idea_id=coverage.idea_id,
            book_id=coverage.book_id,
            idea_title=title,
            book_title=book_title,
            question_type=question_type,
            concept_key=concept_key(facet, CURVEBALL_DIFFICULTY),
            difficulty=CURVEBALL_DIFFICULTY,
            facet_tag=facet,
            seed_question_text=seed_text(coverage, facet, title),
            is_curveball=True,
            added_at=now,
        )

    def mark_result(self, idea_id: str, book_id: str, passed: bool, now: Optional[datetime] = None) -> IdeaCoverage:
        """Apply a curveball outcome. A pass is terminal; a miss reschedules the gate."""
        now = now or self.clock()
        with transaction(self.conn, key=idea_key(book_id, idea_id)):
            coverage = self.tracker.get(idea_id, book_id)
            if coverage is None:
                raise LookupError(f"no coverage for idea {idea_id} in book {book_id}")
            if passed:
                mark_passed(coverage, now)
            else:
                mark_failed(coverage, now, self.delay_days)
            self.tracker.save(coverage)
        if passed:
            logger.info("Curveball passed for idea {}; mastery confirmed", idea_id)
        else:
            logger.info("Curveball missed for idea {}; retry due {}", idea_id, coverage.curveball_due_at.isoformat())
        return coverage

    def force_all_due(self, book_id: str, now: Optional[datetime] = None) -> int:
        """Move every unpassed schedule in a book into the past."""
        now = now or self.clock()
        forced = 0
        for stale in self.tracker.list_for_book(book_id, fully_covered=True):
            with transaction(self.conn, key=idea_key(book_id, stale.idea_id)):
                coverage = self.tracker.get(stale.idea_id, book_id)
                if coverage is None or coverage.curveball_passed:
                    continue
                force_due(coverage, now)
                self.tracker.save(coverage)
                forced += 1
        logger.warning("Forced {} curveball(s) due for book {}", forced, book_id)
        return forced

    def state(self, idea_id: str, book_id: str, now: Optional[datetime] = None) -> CurveballState:
        coverage = self.tracker.get(idea_id, book_id)
        if coverage is None:
            return CurveballState.NOT_ELIGIBLE
        return coverage.curveball_state(
            now or self.clock(),
            has_pending_item=self.queue.has_pending_curveball(idea_id, book_id),
        )
