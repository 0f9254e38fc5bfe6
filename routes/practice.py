from fastapi import APIRouter, Depends, HTTPException

from config import load_config, scheduler_settings
from db.database import get_db
from models.curveball import IllegalTransition
from models.lesson import LessonPlan, PracticeSession
from utils.books import get_book
from utils.generation import OllamaQuestionGenerator, QuestionGenerator
from utils.lessons import LessonComposer
from utils.practice import ResultsSummary, SessionResults, ingest_results

router = APIRouter()


def get_generator() -> QuestionGenerator:
    """Question generator dependency; tests swap in a fake."""
    return OllamaQuestionGenerator(load_config())


def _composer(conn, generator: QuestionGenerator) -> LessonComposer:
    config = load_config()
    return LessonComposer(
        conn,
        generator,
        settings=scheduler_settings(config),
        generation_config=config.get("generation", {}),
    )


def _plan_payload(plan: LessonPlan) -> dict:
    payload = plan.model_dump(mode="json")
    payload["estimated_minutes"] = plan.estimated_minutes
    payload["distribution"]["total_questions"] = plan.distribution.total_questions
    return payload


@router.get("/{book_id}/lessons/{lesson_number}/plan")
async def lesson_plan(
    book_id: str,
    lesson_number: int,
    conn=Depends(get_db),
    generator: QuestionGenerator = Depends(get_generator),
):
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    try:
        plan = _composer(conn, generator).plan(book_id, lesson_number)
    except LookupError:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return _plan_payload(plan)


@router.post("/{book_id}/lessons/{lesson_number}/session")
async def start_session(
    book_id: str,
    lesson_number: int,
    conn=Depends(get_db),
    generator: QuestionGenerator = Depends(get_generator),
):
    """Compose and generate a practice session for one lesson."""
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    try:
        session: PracticeSession = _composer(conn, generator).build_session(book_id, lesson_number)
    except LookupError:
        raise HTTPException(status_code=404, detail="Lesson not found")
    payload = session.model_dump(mode="json")
    payload["plan"] = _plan_payload(session.plan)
    return payload


@router.post("/{book_id}/results", response_model=ResultsSummary)
async def submit_results(book_id: str, results: SessionResults, conn=Depends(get_db)):
    """Apply a session's answers to coverage, the review queue and schedules."""
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    if not results.responses:
        raise HTTPException(status_code=400, detail="No responses submitted")
    try:
        return ingest_results(conn, book_id, results.responses, settings=scheduler_settings())
    except LookupError:
        raise HTTPException(status_code=404, detail="No coverage for this idea")
    except IllegalTransition as exc:
        raise HTTPException(status_code=400, detail=str(exc))
