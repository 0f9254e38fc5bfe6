"""Applying a finished session's answers back onto coverage, queue and schedules."""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from config import SchedulerSettings
from models.coverage import Attempt
from models.lesson import Question, QuestionCategory
from models.review_queue import IncorrectResponse
from utils.books import get_book, idea_title
from utils.coverage import CoverageTracker
from utils.curveball import CurveballScheduler
from utils.questions import get_questions
from utils.review_queue import ReviewQueue
from utils.spaced_review import record_review


class QuestionResponse(BaseModel):
    question_id: str
    is_correct: bool
    user_answer: Optional[str] = None


class SessionResults(BaseModel):
    responses: List[QuestionResponse] = Field(default_factory=list)


class IdeaOutcome(BaseModel):
    idea_id: str
    coverage_percentage: float
    is_fully_covered: bool
    queued_corrections: int = 0


class ResultsSummary(BaseModel):
    ideas: List[IdeaOutcome] = Field(default_factory=list)
    unknown_question_ids: List[str] = Field(default_factory=list)
    curveball_results: Dict[str, bool] = Field(default_factory=dict)
    reviewed_ideas: List[str] = Field(default_factory=list)


def ingest_results(
    conn,
    book_id: str,
    responses: Iterable[QuestionResponse],
    settings: SchedulerSettings = SchedulerSettings(),
    tracker: Optional[CoverageTracker] = None,
    queue: Optional[ReviewQueue] = None,
    curveballs: Optional[CurveballScheduler] = None,
) -> ResultsSummary:
    responses = list(responses)
    tracker = tracker or CoverageTracker(conn, settings)
    queue = queue or ReviewQueue(conn, settings, tracker.clock)
    curveballs = curveballs or CurveballScheduler(conn, settings, tracker.clock, tracker=tracker, queue=queue)
    questions = get_questions(conn, [r.question_id for r in responses])
    summary = ResultsSummary()

    by_idea: Dict[str, List[QuestionResponse]] = defaultdict(list)
    review_scores: Dict[str, List[bool]] = defaultdict(list)
    for response in responses:
        question = questions.get(response.question_id)
        if question is None or question.book_id != book_id:
            summary.unknown_question_ids.append(response.question_id)
            continue
        if question.category is QuestionCategory.CURVEBALL:
            curveballs.mark_result(question.idea_id, book_id, response.is_correct)
            summary.curveball_results[question.idea_id] = response.is_correct
            continue
        if question.category is QuestionCategory.REVIEW:
            review_scores[question.idea_id].append(response.is_correct)
        by_idea[question.idea_id].append(response)

    book = get_book(conn, book_id)
    book_title = book.title if book else ""
    for idea_id, idea_responses in by_idea.items():
        attempts = [_attempt(questions[r.question_id], r) for r in idea_responses]
        coverage = tracker.record_lesson(idea_id, book_id, attempts)
        misses = [
            IncorrectResponse(question_id=r.question_id, user_answer=r.user_answer)
            for r in idea_responses
            if not r.is_correct
        ]
        queued = []
        if misses:
            queued = queue.enqueue_mistakes(
                idea_id,
                book_id,
                idea_title(conn, book_id, idea_id) or "",
                book_title,
                misses,
                questions=questions,
            )
        summary.ideas.append(
            IdeaOutcome(
                idea_id=idea_id,
                coverage_percentage=coverage.coverage_percentage,
                is_fully_covered=coverage.is_fully_covered,
                queued_corrections=len(queued),
            )
        )

    today = tracker.clock().date()
    for idea_id, scores in review_scores.items():
        if record_review(conn, idea_id, book_id, sum(scores), len(scores), today=today) is not None:
            summary.reviewed_ideas.append(idea_id)

    if summary.unknown_question_ids:
        logger.warning("Ignored {} response(s) to unknown questions", len(summary.unknown_question_ids))
    return summary


def _attempt(question: Question, response: QuestionResponse) -> Attempt:
    return Attempt(
        question_id=question.id,
        concept_key=question.concept_key,
        facet_tag=question.facet_tag,
        is_correct=response.is_correct,
        question_text=question.text,
    )
