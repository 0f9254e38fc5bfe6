from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from .curveball import CurveballState, curveball_state, schedule_initial
from .taxonomy import TOTAL_FACETS, FacetTag, facet_from_concept_key


class MissedFacetRecord(BaseModel):
    """A facet+difficulty combination the learner got wrong for one idea."""

    id: Optional[int] = None
    question_id: str
    concept_key: str
    question_text: str = ""
    first_missed_at: datetime
    retry_count: int = 1
    is_corrected: bool = False
    corrected_at: Optional[datetime] = None

    @property
    def facet_tag(self) -> Optional[FacetTag]:
        return facet_from_concept_key(self.concept_key)


class Attempt(BaseModel):
    """One answered question, already resolved to its facet and concept."""

    question_id: str
    concept_key: str
    facet_tag: FacetTag
    is_correct: bool
    question_text: str = ""


class IdeaCoverage(BaseModel):
    """Which facets of one idea have been demonstrated, plus mastery-gate state."""

    id: Optional[int] = None
    idea_id: str
    book_id: str
    total_seen: int = 0
    total_correct: int = 0
    mistake_count: int = 0
    mistakes_corrected: int = 0
    covered_categories: Set[FacetTag] = Field(default_factory=set)
    coverage_percentage: float = 0.0
    is_fully_covered: bool = False
    current_accuracy: float = 0.0
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    covered_at: Optional[datetime] = None
    missed_questions: List[MissedFacetRecord] = Field(default_factory=list)
    curveball_due_at: Optional[datetime] = None
    curveball_passed: bool = False
    curveball_passed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_curveball_fields(self) -> "IdeaCoverage":
        if self.curveball_passed:
            if self.curveball_passed_at is None:
                raise ValueError("a passed curveball needs curveball_passed_at")
            if self.curveball_due_at is not None and self.curveball_due_at > self.curveball_passed_at:
                raise ValueError("a passed curveball cannot have a later due date")
        elif self.curveball_passed_at is not None:
            raise ValueError("curveball_passed_at set on an unpassed curveball")
        return self

    def recompute(self) -> None:
        """Refresh the derived fields from the counters and covered facets."""
        covered = len(self.covered_categories)
        self.coverage_percentage = covered / TOTAL_FACETS * 100.0
        self.is_fully_covered = covered >= TOTAL_FACETS
        if self.total_seen > 0:
            self.current_accuracy = self.total_correct / self.total_seen * 100.0
        else:
            self.current_accuracy = 0.0

    def record_attempt(
        self,
        question_id: str,
        concept_key: str,
        facet_tag: FacetTag,
        is_correct: bool,
        question_text: str,
        *,
        now: datetime,
        curveball_delay_days: int,
    ) -> bool:
        """Apply one answered question. Returns True when this attempt completed coverage."""
        was_fully_covered = self.is_fully_covered
        self.total_seen += 1

        if is_correct:
            self.total_correct += 1
            self.covered_categories.add(FacetTag(facet_tag))
            record = self._open_record(question_id=question_id, concept_key=concept_key)
            if record is not None:
                record.is_corrected = True
                record.corrected_at = now
                self.mistakes_corrected += 1
        else:
            self.mistake_count += 1
            record = self._open_record(concept_key=concept_key)
            if record is not None:
                record.retry_count += 1
            else:
                # corrected records stay closed; a new miss opens a fresh one
                self.missed_questions.append(
                    MissedFacetRecord(
                        question_id=question_id,
                        concept_key=concept_key,
                        question_text=question_text,
                        first_missed_at=now,
                        retry_count=1,
                    )
                )

        if self.first_attempt_at is None:
            self.first_attempt_at = now
        self.last_attempt_at = now
        self.recompute()

        if self.is_fully_covered and self.covered_at is None:
            self.covered_at = now
            schedule_initial(self, now, curveball_delay_days)
        return self.is_fully_covered and not was_fully_covered

    def _open_record(
        self, question_id: Optional[str] = None, concept_key: Optional[str] = None
    ) -> Optional[MissedFacetRecord]:
        for record in self.missed_questions:
            if record.is_corrected:
                continue
            if question_id is not None and record.question_id == question_id:
                return record
            if concept_key is not None and record.concept_key == concept_key:
                return record
        return None

    @property
    def uncorrected_mistakes(self) -> List[MissedFacetRecord]:
        return [record for record in self.missed_questions if not record.is_corrected]

    def curveball_state(self, now: datetime, has_pending_item: bool = False) -> CurveballState:
        return curveball_state(self, now, has_pending_item)
