from datetime import timedelta

import pytest

from config import SchedulerSettings
from db.database import InvariantViolation
from models.review_queue import IncorrectResponse, ReviewQueueItem
from models.taxonomy import Difficulty, FacetTag, QuestionType
from utils.review_queue import ReviewQueue, select_daily


def _item(idea_id, concept, question_type=QuestionType.SINGLE_ANSWER, curveball=False, minutes=0, item_id=None, clock=None):
    facet = FacetTag(concept.split("-")[0])
    return ReviewQueueItem(
        id=item_id,
        idea_id=idea_id,
        book_id="deep-work",
        question_type=question_type,
        concept_key=concept,
        difficulty=Difficulty(concept.split("-")[1]),
        facet_tag=facet,
        is_curveball=curveball,
        added_at=clock.now + timedelta(minutes=minutes),
    )


def test_enqueue_mistakes_suppresses_pending_duplicates(conn, book, clock, add_question):
    add_question("q1", "i1", FacetTag.APPLY, Difficulty.MEDIUM)
    add_question("q2", "i1", FacetTag.APPLY, Difficulty.MEDIUM, text="A second Apply-Medium question")
    add_question("q3", "i1", FacetTag.RECALL, Difficulty.EASY)
    queue = ReviewQueue(conn, clock=clock)

    added = queue.enqueue_mistakes(
        "i1", "deep-work", "Idea 1", "Deep Work",
        [IncorrectResponse(question_id="q1"), IncorrectResponse(question_id="q2"), IncorrectResponse(question_id="q3")],
    )
    assert [item.concept_key for item in added] == ["Apply-Medium", "Recall-Easy"]

    again = queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="q1")])
    assert again == []

    pending = queue.pending_items("deep-work")
    keys = [(item.idea_id, item.concept_key) for item in pending if not item.is_curveball]
    assert len(keys) == len(set(keys)) == 2
    assert pending[0].seed_question_text.startswith("Which option best shows Apply")


def test_completed_items_do_not_block_new_mistakes(conn, book, clock, add_question):
    add_question("q1", "i1", FacetTag.APPLY, Difficulty.MEDIUM)
    queue = ReviewQueue(conn, clock=clock)
    first = queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="q1")])
    queue.mark_completed(first)

    clock.advance(days=1)
    second = queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="q1")])
    assert len(second) == 1
    history = conn.execute("SELECT COUNT(*) FROM review_queue").fetchone()[0]
    assert history == 2


def test_enqueue_guards_against_existing_duplicates(conn, book, clock, add_question):
    add_question("q1", "i1", FacetTag.APPLY, Difficulty.MEDIUM)
    queue = ReviewQueue(conn, clock=clock)
    queue._insert(_item("i1", "Apply-Medium", clock=clock))
    queue._insert(_item("i1", "Apply-Medium", clock=clock, minutes=1))
    with pytest.raises(InvariantViolation):
        queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="q1")])


def test_unknown_questions_are_skipped(conn, book, clock):
    queue = ReviewQueue(conn, clock=clock)
    added = queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="nope")])
    assert added == []


def test_daily_selection_respects_caps_and_concepts(clock):
    pending = [
        _item("i1", "Apply-Medium", minutes=0, item_id=1, clock=clock),
        _item("i1", "Apply-Medium", QuestionType.MULTI_ANSWER, minutes=1, item_id=2, clock=clock),
        _item("i2", "Recall-Easy", minutes=2, item_id=3, clock=clock),
        _item("i3", "Contrast-Hard", minutes=3, item_id=4, clock=clock),
        _item("i4", "Critique-Hard", minutes=4, item_id=5, clock=clock),
        _item("i1", "Reframe-Easy", QuestionType.OPEN_RESPONSE, minutes=5, item_id=6, clock=clock),
        _item("i2", "HowWield-Hard", QuestionType.OPEN_RESPONSE, minutes=6, item_id=7, clock=clock),
    ]
    mcqs, open_ended = select_daily(pending, mcq_cap=3, open_cap=1)
    assert [item.id for item in mcqs] == [1, 3, 4]
    assert [item.id for item in open_ended] == [6]


def test_curveball_always_selected_and_counts_toward_cap(clock):
    pending = [
        _item("i1", "Reframe-Easy", QuestionType.OPEN_RESPONSE, minutes=0, item_id=1, clock=clock),
        _item("i2", "Apply-Medium", minutes=1, item_id=2, clock=clock),
        _item("i3", "HowWield-Hard", QuestionType.OPEN_RESPONSE, curveball=True, minutes=9, item_id=3, clock=clock),
    ]
    mcqs, open_ended = select_daily(pending, mcq_cap=3, open_cap=1)
    assert [item.id for item in open_ended] == [3]
    assert [item.id for item in mcqs] == [2]


def test_curveball_excludes_same_concept_correction(clock):
    pending = [
        _item("i1", "Apply-Hard", minutes=0, item_id=1, clock=clock),
        _item("i1", "Apply-Hard", curveball=True, minutes=5, item_id=2, clock=clock),
        _item("i2", "Apply-Hard", minutes=6, item_id=3, clock=clock),
    ]
    mcqs, open_ended = select_daily(pending, mcq_cap=3, open_cap=1)
    assert [item.id for item in mcqs] == [2, 3]
    assert open_ended == []


def test_backlog_never_crowds_out_curveball(conn, book, clock):
    queue = ReviewQueue(conn, SchedulerSettings(mcq_cap=3, open_cap=1), clock=clock)
    for n in range(10):
        queue._insert(_item(f"i{n % 6 + 1}", f"Apply-{['Easy', 'Medium', 'Hard'][n % 3]}", minutes=n, clock=clock))
    curveball = _item("i6", "HowWield-Hard", QuestionType.OPEN_RESPONSE, curveball=True, minutes=30, clock=clock)
    queue.enqueue_curveball(curveball)

    daily = queue.daily_review_items("deep-work")
    assert curveball.id in [item.id for item in daily.items]
    assert len(daily.mcqs) <= 3
    assert len(daily.open_ended) <= 1
    identities = [item.concept_identity for item in daily.items]
    assert len(identities) == len(set(identities))


def test_mark_completed_is_idempotent_and_keeps_history(conn, book, clock, add_question):
    add_question("q1", "i1", FacetTag.APPLY, Difficulty.MEDIUM)
    queue = ReviewQueue(conn, clock=clock)
    items = queue.enqueue_mistakes("i1", "deep-work", "Idea 1", "Deep Work", [IncorrectResponse(question_id="q1")])

    assert queue.mark_completed(items) == 1
    assert queue.mark_completed(items) == 0
    assert queue.pending_items("deep-work") == []
    row = conn.execute("SELECT is_completed, completed_at FROM review_queue WHERE id = ?", (items[0].id,)).fetchone()
    assert row["is_completed"] == 1
    assert row["completed_at"] is not None


def test_queue_statistics_and_correction_candidates(conn, book, clock):
    queue = ReviewQueue(conn, clock=clock)
    queue._insert(_item("i1", "Apply-Medium", minutes=0, clock=clock))
    queue._insert(_item("i1", "Apply-Medium", QuestionType.MULTI_ANSWER, minutes=1, clock=clock))
    queue._insert(_item("i2", "Reframe-Easy", QuestionType.OPEN_RESPONSE, minutes=2, clock=clock))
    queue._insert(_item("i3", "Recall-Easy", minutes=3, clock=clock))
    queue.enqueue_curveball(_item("i4", "HowWield-Hard", QuestionType.OPEN_RESPONSE, curveball=True, clock=clock))

    stats = queue.queue_statistics("deep-work")
    assert stats.total_pending_mcq == 3
    assert stats.total_pending_open_ended == 2

    candidates = queue.correction_candidates("deep-work", limit=2)
    assert [(c.idea_id, c.concept_key) for c in candidates] == [("i1", "Apply-Medium"), ("i2", "Reframe-Easy")]


def test_only_one_pending_curveball_per_idea(conn, book, clock):
    queue = ReviewQueue(conn, clock=clock)
    first = queue.enqueue_curveball(_item("i1", "HowWield-Hard", QuestionType.OPEN_RESPONSE, curveball=True, clock=clock))
    second = queue.enqueue_curveball(_item("i1", "HowWield-Hard", QuestionType.OPEN_RESPONSE, curveball=True, clock=clock))
    assert first is not None
    assert second is None
