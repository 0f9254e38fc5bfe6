"""Lesson composition: how many new, review and correction questions a session gets."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from config import SchedulerSettings
from db.database import InvariantViolation, StoreError
from models.book import Idea
from models.lesson import (
    DEFAULT_DISTRIBUTION,
    CorrectionTarget,
    IdeaContext,
    LessonPlan,
    PracticeSession,
    Question,
    QuestionCategory,
    QuestionContent,
    QuestionDistribution,
)
from models.review_queue import ReviewQueueItem
from models.taxonomy import Difficulty, FacetTag, QuestionType, difficulty_for_facet
from utils.books import get_book, get_idea, idea_for_lesson
from utils.curveball import CurveballScheduler
from utils.generation import (
    GenerationError,
    QuestionGenerator,
    generate_with_retry,
    placeholder_questions,
    randomize_options,
)
from utils.questions import save_questions
from utils.review_queue import ReviewQueue
from utils.spaced_review import due_ideas
from utils.timestamps import utc_now


def calculate_distribution(lesson_number: int, has_reviews: bool, has_corrections: bool) -> QuestionDistribution:
    if lesson_number <= 1:
        return QuestionDistribution(new_questions=8, review_questions=0, correction_questions=0)
    if lesson_number <= 3:
        # spaced review stays out until a few ideas are covered
        if has_corrections:
            return QuestionDistribution(new_questions=6, review_questions=0, correction_questions=2)
        return QuestionDistribution(new_questions=8, review_questions=0, correction_questions=0)
    if has_reviews and has_corrections:
        return QuestionDistribution(new_questions=5, review_questions=2, correction_questions=1)
    if has_reviews:
        return QuestionDistribution(new_questions=6, review_questions=2, correction_questions=0)
    if has_corrections:
        return QuestionDistribution(new_questions=6, review_questions=0, correction_questions=2)
    return QuestionDistribution(new_questions=8, review_questions=0, correction_questions=0)


def _split(total: int, buckets: int) -> List[int]:
    """Spread ``total`` over ``buckets`` as evenly as possible, earlier buckets first."""
    if buckets <= 0:
        return []
    base, extra = divmod(total, buckets)
    return [base + (1 if i < extra else 0) for i in range(buckets)]


def _correction_target(item: ReviewQueueItem) -> CorrectionTarget:
    return CorrectionTarget(
        idea_id=item.idea_id,
        concept_key=item.concept_key,
        facet_tag=item.facet_tag,
        difficulty=item.difficulty,
        question_type=item.question_type,
        seed_question_text=item.seed_question_text,
        queue_item_id=item.id,
    )


class LessonComposer:
    def __init__(
        self,
        conn,
        generator: QuestionGenerator,
        settings: SchedulerSettings = SchedulerSettings(),
        clock: Callable[[], datetime] = utc_now,
        queue: Optional[ReviewQueue] = None,
        curveballs: Optional[CurveballScheduler] = None,
        generation_config: Optional[Dict[str, Any]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.conn = conn
        self.generator = generator
        self.settings = settings
        self.clock = clock
        self.queue = queue or ReviewQueue(conn, settings, clock)
        self.curveballs = curveballs or CurveballScheduler(conn, settings, clock, queue=self.queue)
        generation_config = generation_config or {}
        self.max_attempts = int(generation_config.get("max_attempts", 3))
        self.backoff_seconds = float(generation_config.get("backoff_seconds", 0.5))
        self.sleep = sleep

    def plan(self, book_id: str, lesson_number: int) -> LessonPlan:
        idea = idea_for_lesson(self.conn, book_id, lesson_number)
        if idea is None:
            raise LookupError(f"book {book_id} has no lesson {lesson_number}")
        try:
            return self._plan_for(idea, lesson_number)
        except StoreError as exc:
            logger.warning("Lesson {} of book {} falls back to the default plan: {}", lesson_number, book_id, exc)
        except InvariantViolation as exc:
            # duplicates are left for reconcile_duplicates to merge
            logger.error("Lesson {} of book {} falls back to the default plan: {}", lesson_number, book_id, exc)
        return LessonPlan(
            lesson_number=lesson_number,
            book_id=book_id,
            primary_idea_id=idea.id,
            primary_idea_title=idea.title,
            distribution=DEFAULT_DISTRIBUTION,
            is_fallback=True,
        )

    def _plan_for(self, idea: Idea, lesson_number: int) -> LessonPlan:
        book_id = idea.book_id
        self.curveballs.ensure_queued_if_due(book_id)

        corrections: List[ReviewQueueItem] = []
        reviews: List[str] = []
        if lesson_number >= 2:
            corrections = self.queue.correction_candidates(book_id, self.settings.correction_limit)
        if lesson_number >= 4:
            reviews = due_ideas(
                self.conn,
                book_id,
                self.settings.review_limit,
                today=self.clock().date(),
                exclude=[idea.id],
            )
        distribution = calculate_distribution(lesson_number, bool(reviews), bool(corrections))
        curveball = next((item for item in self.queue.pending_items(book_id) if item.is_curveball), None)

        plan = LessonPlan(
            lesson_number=lesson_number,
            book_id=book_id,
            primary_idea_id=idea.id,
            primary_idea_title=idea.title,
            review_idea_ids=reviews[:distribution.review_questions],
            corrections=[_correction_target(item) for item in corrections[:distribution.correction_questions]],
            distribution=distribution,
            curveball_item_id=curveball.id if curveball else None,
        )
        logger.info(
            "Lesson {} of book {}: new={} review={} correction={} curveball={}",
            lesson_number,
            book_id,
            *distribution.as_tuple(),
            plan.curveball_item_id,
        )
        return plan

    def build_session(self, book_id: str, lesson_number: int) -> PracticeSession:
        """Plan a lesson, generate its questions, and consume the queue items it used."""
        plan = self.plan(book_id, lesson_number)
        book = get_book(self.conn, book_id)
        book_title = book.title if book else ""
        session = PracticeSession(plan=plan)

        primary = self._context(book_id, plan.primary_idea_id, book_title)
        session.questions += self._questions(
            session, primary, plan.distribution.new_questions, QuestionCategory.NEW
        )

        for idea_id, count in zip(plan.review_idea_ids, _split(plan.distribution.review_questions, len(plan.review_idea_ids))):
            context = self._context(book_id, idea_id, book_title)
            session.questions += self._questions(session, context, count, QuestionCategory.REVIEW)

        consumed: List[int] = []
        for target, count in zip(plan.corrections, _split(plan.distribution.correction_questions, len(plan.corrections))):
            context = self._context(book_id, target.idea_id, book_title, seed_text=target.seed_question_text)
            session.questions += self._questions(
                session,
                context,
                count,
                QuestionCategory.CORRECTION,
                facet=target.facet_tag,
                difficulty=target.difficulty,
                question_type=target.question_type,
                queue_item_id=target.queue_item_id,
            )
            if target.queue_item_id is not None:
                consumed.append(target.queue_item_id)

        if plan.curveball_item_id is not None:
            items = self.queue.get_items([plan.curveball_item_id])
            if items:
                item = items[0]
                context = self._context(book_id, item.idea_id, book_title, seed_text=item.seed_question_text)
                session.questions += self._questions(
                    session,
                    context,
                    1,
                    QuestionCategory.CURVEBALL,
                    facet=item.facet_tag,
                    difficulty=item.difficulty,
                    question_type=item.question_type,
                    queue_item_id=item.id,
                )
                consumed.append(item.id)

        # nothing is written until every category has been generated
        save_questions(self.conn, session.questions)
        self.queue.mark_completed(self.queue.get_items(consumed))
        return session

    def _context(self, book_id: str, idea_id: str, book_title: str, seed_text: Optional[str] = None) -> IdeaContext:
        idea = get_idea(self.conn, book_id, idea_id)
        return IdeaContext(
            idea_id=idea_id,
            book_id=book_id,
            title=idea.title if idea else idea_id,
            description=idea.description if idea else "",
            book_title=book_title,
            seed_text=seed_text,
        )

    def _questions(
        self,
        session: PracticeSession,
        context: IdeaContext,
        count: int,
        category: QuestionCategory,
        facet: Optional[FacetTag] = None,
        difficulty: Optional[Difficulty] = None,
        question_type: Optional[QuestionType] = None,
        queue_item_id: Optional[int] = None,
    ) -> List[Question]:
        if count <= 0:
            return []
        try:
            kwargs = {"max_attempts": self.max_attempts, "backoff_seconds": self.backoff_seconds}
            if self.sleep is not None:
                kwargs["sleep"] = self.sleep
            contents = generate_with_retry(self.generator, context, count, difficulty, facet, **kwargs)
        except GenerationError as exc:
            logger.warning("Using placeholder questions for idea {} ({}): {}", context.idea_id, category.value, exc)
            session.used_placeholders = True
            contents = [randomize_options(content) for content in placeholder_questions(context, count, facet, difficulty)]
        return [
            self._to_question(content, context, category, facet, difficulty, question_type, queue_item_id)
            for content in contents
        ]

    def _to_question(
        self,
        content: QuestionContent,
        context: IdeaContext,
        category: QuestionCategory,
        facet: Optional[FacetTag],
        difficulty: Optional[Difficulty],
        question_type: Optional[QuestionType],
        queue_item_id: Optional[int],
    ) -> Question:
        # targeted questions keep the concept they were generated for
        facet_tag = facet or content.facet_tag or FacetTag.RECALL
        options = content.options
        correct_indices = content.correct_indices
        kind = content.question_type
        if question_type is QuestionType.OPEN_RESPONSE:
            kind, options, correct_indices = QuestionType.OPEN_RESPONSE, None, None
        return Question(
            id=uuid.uuid4().hex,
            idea_id=context.idea_id,
            book_id=context.book_id,
            question_type=kind,
            difficulty=difficulty or content.difficulty or difficulty_for_facet(facet_tag),
            facet_tag=facet_tag,
            text=content.text,
            options=options,
            correct_indices=correct_indices,
            category=category,
            queue_item_id=queue_item_id,
            created_at=self.clock(),
        )
