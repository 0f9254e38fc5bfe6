from fastapi import APIRouter, Depends, HTTPException

from config import scheduler_settings
from db.database import get_db
from models.book import Book, BookCreate
from utils.books import count_ideas, get_book, register_book
from utils.coverage import CoverageTracker

router = APIRouter()


@router.post("", response_model=Book)
async def create_book(payload: BookCreate, conn=Depends(get_db)):
    """Register a book with its ideas in reading order."""
    if not payload.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    idea_ids = [idea.id for idea in payload.ideas]
    if len(set(idea_ids)) != len(idea_ids):
        raise HTTPException(status_code=400, detail="Idea ids must be unique within a book")
    return register_book(conn, payload)


@router.get("/{book_id}", response_model=Book)
async def read_book(book_id: str, conn=Depends(get_db)):
    book = get_book(conn, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.get("/{book_id}/coverage")
async def book_coverage(book_id: str, conn=Depends(get_db)):
    """Overall mastery for the book plus each idea's facet coverage."""
    book = get_book(conn, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    tracker = CoverageTracker(conn, scheduler_settings())
    coverages = {coverage.idea_id: coverage for coverage in tracker.list_for_book(book_id)}
    ideas = []
    for idea in book.ideas:
        coverage = coverages.get(idea.id)
        ideas.append({
            "idea_id": idea.id,
            "title": idea.title,
            "position": idea.position,
            "coverage_percentage": coverage.coverage_percentage if coverage else 0.0,
            "is_fully_covered": coverage.is_fully_covered if coverage else False,
            "covered_facets": sorted(f.value for f in coverage.covered_categories) if coverage else [],
            "uncorrected_mistakes": len(coverage.uncorrected_mistakes) if coverage else 0,
        })
    return {
        "book_id": book_id,
        "coverage_percentage": tracker.book_coverage(book_id, count_ideas(conn, book_id)),
        "ideas": ideas,
        "mistakes_for_correction": [
            {"idea_id": idea_id, "concept_keys": [record.concept_key for record in records]}
            for idea_id, records in tracker.mistakes_for_correction(book_id)
        ],
    }
