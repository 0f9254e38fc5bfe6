import sqlite3
from datetime import timedelta

import pytest

from config import SchedulerSettings
from db.database import InvariantViolation, StoreError
from models.coverage import Attempt, IdeaCoverage
from models.taxonomy import FACET_ORDER, Difficulty, FacetTag, concept_key
from utils.coverage import CoverageTracker
from utils.spaced_review import get_review_state


def _cover_everything(tracker, coverage):
    for facet in FACET_ORDER:
        tracker.record_attempt(coverage, f"q-{facet.value}", concept_key(facet, Difficulty.EASY), facet, True, "")
    return coverage


def test_get_or_create_is_idempotent(conn, book):
    tracker = CoverageTracker(conn)
    first = tracker.get_or_create("i1", "deep-work")
    second = tracker.get_or_create("i1", "deep-work")
    assert first.id == second.id
    count = conn.execute("SELECT COUNT(*) FROM idea_coverage WHERE idea_id = 'i1'").fetchone()[0]
    assert count == 1


def test_duplicate_coverage_rows_are_refused(conn, book):
    conn.execute("INSERT INTO idea_coverage (idea_id, book_id) VALUES ('i1', 'deep-work')")
    conn.execute("INSERT INTO idea_coverage (idea_id, book_id) VALUES ('i1', 'deep-work')")
    with pytest.raises(InvariantViolation):
        CoverageTracker(conn).get_or_create("i1", "deep-work")


def test_coverage_only_grows(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    coverage = tracker.get_or_create("i1", "deep-work")
    sequence = [
        (FacetTag.RECALL, True),
        (FacetTag.APPLY, False),
        (FacetTag.RECALL, False),
        (FacetTag.APPLY, True),
        (FacetTag.CRITIQUE, False),
        (FacetTag.CONTRAST, True),
    ]
    previous = set()
    for n, (facet, correct) in enumerate(sequence):
        tracker.record_attempt(coverage, f"q{n}", concept_key(facet, Difficulty.MEDIUM), facet, correct, "text")
        assert previous <= coverage.covered_categories
        assert coverage.coverage_percentage == 100 * len(coverage.covered_categories) / 8
        previous = set(coverage.covered_categories)

    assert coverage.covered_categories == {FacetTag.RECALL, FacetTag.APPLY, FacetTag.CONTRAST}
    assert coverage.total_seen == 6
    assert coverage.total_correct == 3
    assert coverage.mistake_count == 3
    assert coverage.current_accuracy == 50.0
    assert not coverage.is_fully_covered


def test_full_coverage_schedules_curveball_once(conn, book, clock):
    tracker = CoverageTracker(conn, SchedulerSettings(curveball_delay_days=3), clock=clock)
    coverage = _cover_everything(tracker, tracker.get_or_create("i1", "deep-work"))

    assert coverage.is_fully_covered
    assert coverage.coverage_percentage == 100.0
    assert coverage.covered_at == clock.now
    assert coverage.curveball_due_at == clock.now + timedelta(days=3)
    covered_at = coverage.covered_at
    due_at = coverage.curveball_due_at

    clock.advance(days=1)
    tracker.record_attempt(coverage, "later-1", "Apply-Hard", FacetTag.APPLY, False, "a later miss")
    tracker.record_attempt(coverage, "later-2", "Apply-Hard", FacetTag.APPLY, True, "")

    reloaded = tracker.get("i1", "deep-work")
    assert reloaded.covered_at == covered_at
    assert reloaded.curveball_due_at == due_at

    review = get_review_state(conn, "i1", "deep-work")
    assert review is not None
    assert review.due_date == (covered_at.date() + timedelta(days=1)).isoformat()


def test_missed_facet_lifecycle(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    coverage = tracker.get_or_create("i2", "deep-work")

    tracker.record_attempt(coverage, "q1", "Apply-Medium", FacetTag.APPLY, False, "How would you apply it?")
    tracker.record_attempt(coverage, "q2", "Apply-Medium", FacetTag.APPLY, False, "Apply it again")
    assert len(coverage.missed_questions) == 1
    assert coverage.missed_questions[0].retry_count == 2

    tracker.record_attempt(coverage, "q3", "Apply-Medium", FacetTag.APPLY, True, "")
    record = coverage.missed_questions[0]
    assert record.is_corrected
    assert record.corrected_at == clock.now
    assert coverage.mistakes_corrected == 1

    # a corrected record stays closed
    tracker.record_attempt(coverage, "q4", "Apply-Medium", FacetTag.APPLY, False, "Missed once more")
    assert len(coverage.missed_questions) == 2
    assert coverage.missed_questions[0].retry_count == 2
    assert coverage.missed_questions[1].retry_count == 1
    assert not coverage.missed_questions[1].is_corrected

    reloaded = tracker.get("i2", "deep-work")
    assert [m.is_corrected for m in reloaded.missed_questions] == [True, False]


def test_correct_answer_to_same_question_closes_record(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    coverage = tracker.get_or_create("i3", "deep-work")
    tracker.record_attempt(coverage, "q1", "Critique-Hard", FacetTag.CRITIQUE, False, "Critique it")
    # same question answered again, tagged with a different difficulty
    tracker.record_attempt(coverage, "q1", "Critique-Medium", FacetTag.CRITIQUE, True, "")
    assert coverage.missed_questions[0].is_corrected
    assert coverage.uncorrected_mistakes == []


def test_book_coverage_counts_fully_covered_ideas_only(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    _cover_everything(tracker, tracker.get_or_create("i1", "deep-work"))
    _cover_everything(tracker, tracker.get_or_create("i2", "deep-work"))
    partial = tracker.get_or_create("i3", "deep-work")
    tracker.record_attempt(partial, "p1", "Recall-Easy", FacetTag.RECALL, True, "")

    assert tracker.book_coverage("deep-work", 6) == 33.3
    assert tracker.book_coverage("deep-work", 0) == 0.0


def test_record_lesson_applies_all_attempts(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    attempts = [
        Attempt(question_id="a", concept_key="Recall-Easy", facet_tag=FacetTag.RECALL, is_correct=True),
        Attempt(question_id="b", concept_key="Reframe-Easy", facet_tag=FacetTag.REFRAME, is_correct=False,
                question_text="Say it in your own words"),
    ]
    coverage = tracker.record_lesson("i4", "deep-work", attempts)
    assert coverage.total_seen == 2
    assert coverage.covered_categories == {FacetTag.RECALL}
    assert coverage.missed_questions[0].concept_key == "Reframe-Easy"

    mistakes = tracker.mistakes_for_correction("deep-work")
    assert [(idea, [r.concept_key for r in records]) for idea, records in mistakes] == [("i4", ["Reframe-Easy"])]


def test_failed_write_leaves_caller_state_untouched(conn, book, clock, monkeypatch):
    tracker = CoverageTracker(conn, clock=clock)
    coverage = tracker.get_or_create("i5", "deep-work")
    tracker.record_attempt(coverage, "q1", "Recall-Easy", FacetTag.RECALL, True, "")

    def broken_write(_coverage):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(tracker, "_write", broken_write)
    with pytest.raises(StoreError):
        tracker.record_attempt(coverage, "q2", "Apply-Medium", FacetTag.APPLY, True, "")

    assert coverage.total_seen == 1
    assert coverage.covered_categories == {FacetTag.RECALL}
    assert CoverageTracker(conn).get("i5", "deep-work").total_seen == 1


def test_round_trip_keeps_derived_fields(conn, book, clock):
    tracker = CoverageTracker(conn, clock=clock)
    coverage = tracker.get_or_create("i6", "deep-work")
    tracker.record_attempt(coverage, "q1", "Apply-Medium", FacetTag.APPLY, False, "Apply it")
    tracker.record_attempt(coverage, "q2", "Recall-Easy", FacetTag.RECALL, True, "")
    tracker.record_attempt(coverage, "q3", "WhenUse-Medium", FacetTag.WHEN_USE, True, "")

    restored = IdeaCoverage.model_validate_json(coverage.model_dump_json())
    restored.recompute()
    for name in ("coverage_percentage", "is_fully_covered", "current_accuracy", "covered_categories"):
        assert getattr(restored, name) == getattr(coverage, name)
    assert restored.missed_questions == coverage.missed_questions

    reloaded = tracker.get("i6", "deep-work")
    reloaded.recompute()
    assert reloaded.coverage_percentage == coverage.coverage_percentage
    assert reloaded.current_accuracy == coverage.current_accuracy
    assert reloaded.missed_questions == coverage.missed_questions
