from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from config import scheduler_settings
from db.database import get_db
from models.curveball import IllegalTransition
from utils.books import get_book, get_idea
from utils.curveball import CurveballScheduler

router = APIRouter()


class CurveballResult(BaseModel):
    passed: bool


def _require_book(conn, book_id: str) -> None:
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")


@router.post("/{book_id}/ensure")
async def ensure_queued(book_id: str, conn=Depends(get_db)):
    """Queue curveballs for every idea whose gate has come due."""
    _require_book(conn, book_id)
    queued = CurveballScheduler(conn, scheduler_settings()).ensure_queued_if_due(book_id)
    return {"queued": [item.model_dump(mode="json") for item in queued]}


@router.post("/{book_id}/force-due")
async def force_due(book_id: str, conn=Depends(get_db)):
    _require_book(conn, book_id)
    forced = CurveballScheduler(conn, scheduler_settings()).force_all_due(book_id)
    return {"forced": forced}


@router.post("/{book_id}/{idea_id}/result")
async def curveball_result(book_id: str, idea_id: str, payload: CurveballResult, conn=Depends(get_db)):
    _require_book(conn, book_id)
    scheduler = CurveballScheduler(conn, scheduler_settings())
    try:
        coverage = scheduler.mark_result(idea_id, book_id, payload.passed)
    except LookupError:
        raise HTTPException(status_code=404, detail="No coverage for this idea")
    except IllegalTransition as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "idea_id": idea_id,
        "state": scheduler.state(idea_id, book_id).value,
        "curveball_due_at": coverage.curveball_due_at,
        "curveball_passed": coverage.curveball_passed,
        "curveball_passed_at": coverage.curveball_passed_at,
    }


@router.get("/{book_id}/{idea_id}/state")
async def curveball_state(book_id: str, idea_id: str, conn=Depends(get_db)):
    _require_book(conn, book_id)
    if not get_idea(conn, book_id, idea_id):
        raise HTTPException(status_code=404, detail="Idea not found")
    state = CurveballScheduler(conn, scheduler_settings()).state(idea_id, book_id)
    return {"idea_id": idea_id, "state": state.value}
