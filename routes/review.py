from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from config import scheduler_settings
from db.database import get_db
from models.review_queue import DailyReview, QueueStatistics
from utils.books import get_book
from utils.review_queue import ReviewQueue

router = APIRouter()


class CompleteRequest(BaseModel):
    item_ids: List[int]


@router.get("/{book_id}/daily", response_model=DailyReview)
async def daily_review(book_id: str, conn=Depends(get_db)):
    """Today's capped review selection. Items stay pending until completed."""
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return ReviewQueue(conn, scheduler_settings()).daily_review_items(book_id)


@router.post("/complete")
async def complete_items(payload: CompleteRequest, conn=Depends(get_db)):
    queue = ReviewQueue(conn, scheduler_settings())
    items = queue.get_items(payload.item_ids)
    missing = set(payload.item_ids) - {item.id for item in items}
    if missing:
        raise HTTPException(status_code=404, detail=f"Unknown review items: {sorted(missing)}")
    changed = queue.mark_completed(items)
    return {"completed": changed, "requested": len(items)}


@router.get("/{book_id}/stats", response_model=QueueStatistics)
async def queue_stats(book_id: str, conn=Depends(get_db)):
    if not get_book(conn, book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return ReviewQueue(conn, scheduler_settings()).queue_statistics(book_id)
