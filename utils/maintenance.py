"""Best-effort repair of records that break the one-per-key invariants.

Services refuse to work on duplicated records; this pass is run on its own,
never from inside a normal request.
"""
from __future__ import annotations

from typing import Dict, List

from loguru import logger

from db.database import transaction
from models.taxonomy import FacetTag
from utils.coverage import decode_facets, encode_facets
from utils.timestamps import from_db, to_db, utc_now


def _earliest(values):
    present = [v for v in values if v is not None]
    return min(present) if present else None


def _latest(values):
    present = [v for v in values if v is not None]
    return max(present) if present else None


def _merge_coverage_group(cursor, rows) -> None:
    keeper, duplicates = rows[0], rows[1:]
    facets = set()
    for row in rows:
        facets |= decode_facets(row["covered_categories"])
    total_seen = sum(row["total_seen"] for row in rows)
    total_correct = sum(row["total_correct"] for row in rows)
    covered = len(facets)
    fully_covered = covered >= len(FacetTag)
    passed_at = _earliest(from_db(row["curveball_passed_at"]) for row in rows if row["curveball_passed"])
    due_at = _earliest(from_db(row["curveball_due_at"]) for row in rows)
    if passed_at is not None and due_at is not None and due_at > passed_at:
        due_at = passed_at
    cursor.execute(
        """
        UPDATE idea_coverage SET
            total_seen = ?, total_correct = ?, mistake_count = ?, mistakes_corrected = ?,
            covered_categories = ?, coverage_percentage = ?, is_fully_covered = ?,
            current_accuracy = ?, first_attempt_at = ?, last_attempt_at = ?, covered_at = ?,
            curveball_due_at = ?, curveball_passed = ?, curveball_passed_at = ?
        WHERE id = ?
        """,
        (
            total_seen,
            total_correct,
            sum(row["mistake_count"] for row in rows),
            sum(row["mistakes_corrected"] for row in rows),
            encode_facets(facets),
            covered / len(FacetTag) * 100.0,
            1 if fully_covered else 0,
            (total_correct / total_seen * 100.0) if total_seen else 0.0,
            to_db(_earliest(from_db(row["first_attempt_at"]) for row in rows)),
            to_db(_latest(from_db(row["last_attempt_at"]) for row in rows)),
            to_db(_earliest(from_db(row["covered_at"]) for row in rows)) if fully_covered else None,
            to_db(due_at) if fully_covered else None,
            1 if passed_at is not None else 0,
            to_db(passed_at),
            keeper["id"],
        ),
    )
    duplicate_ids = [row["id"] for row in duplicates]
    placeholders = ",".join("?" for _ in duplicate_ids)
    cursor.execute(
        f"UPDATE missed_facets SET coverage_id = ? WHERE coverage_id IN ({placeholders})",
        [keeper["id"], *duplicate_ids],
    )
    cursor.execute(f"DELETE FROM idea_coverage WHERE id IN ({placeholders})", duplicate_ids)


def reconcile_duplicates(conn) -> Dict[str, int]:
    """Merge duplicate coverage records and complete duplicate pending queue items.

    Returns counts of merged coverage rows and completed queue items.
    """
    merged = 0
    completed = 0
    with transaction(conn, key=("maintenance",)):
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT idea_id, book_id FROM idea_coverage
            GROUP BY idea_id, book_id HAVING COUNT(*) > 1
            """
        )
        for pair in cursor.fetchall():
            cursor.execute(
                "SELECT * FROM idea_coverage WHERE idea_id = ? AND book_id = ? ORDER BY id ASC",
                (pair["idea_id"], pair["book_id"]),
            )
            rows = cursor.fetchall()
            _merge_coverage_group(cursor, rows)
            merged += len(rows) - 1
            logger.warning("Merged {} duplicate coverage record(s) for idea {}", len(rows) - 1, pair["idea_id"])

        cursor.execute(
            """
            SELECT id, idea_id, book_id, concept_key FROM review_queue
            WHERE is_completed = 0 AND is_curveball = 0
            ORDER BY added_at ASC, id ASC
            """
        )
        seen = set()
        stale: List[int] = []
        for row in cursor.fetchall():
            identity = (row["book_id"], row["idea_id"], row["concept_key"])
            if identity in seen:
                stale.append(row["id"])
            else:
                seen.add(identity)
        if stale:
            now = to_db(utc_now())
            cursor.executemany(
                "UPDATE review_queue SET is_completed = 1, completed_at = ? WHERE id = ?",
                [(now, item_id) for item_id in stale],
            )
            completed = len(stale)
            logger.warning("Completed {} duplicate pending review item(s)", completed)
    return {"merged_coverage": merged, "completed_queue_items": completed}
