from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .taxonomy import Difficulty, FacetTag, QuestionType, concept_key


class QuestionCategory(str, Enum):
    NEW = "new"
    REVIEW = "review"
    CORRECTION = "correction"
    CURVEBALL = "curveball"


class IdeaContext(BaseModel):
    """What the generation service needs to know about an idea."""

    idea_id: str
    book_id: str
    title: str
    description: str = ""
    book_title: str = ""
    seed_text: Optional[str] = None


class QuestionContent(BaseModel):
    text: str
    options: Optional[List[str]] = None
    correct_indices: Optional[List[int]] = None
    question_type: QuestionType = QuestionType.SINGLE_ANSWER
    facet_tag: Optional[FacetTag] = None
    difficulty: Optional[Difficulty] = None


class Question(BaseModel):
    id: str
    idea_id: str
    book_id: str
    question_type: QuestionType
    difficulty: Difficulty
    facet_tag: FacetTag
    text: str
    options: Optional[List[str]] = None
    correct_indices: Optional[List[int]] = None
    category: QuestionCategory = QuestionCategory.NEW
    queue_item_id: Optional[int] = None
    created_at: datetime

    @property
    def concept_key(self) -> str:
        return concept_key(self.facet_tag, self.difficulty)


class QuestionDistribution(BaseModel):
    new_questions: int
    review_questions: int
    correction_questions: int

    @property
    def total_questions(self) -> int:
        return self.new_questions + self.review_questions + self.correction_questions

    def as_tuple(self) -> tuple:
        return (self.new_questions, self.review_questions, self.correction_questions)


DEFAULT_DISTRIBUTION = QuestionDistribution(new_questions=8, review_questions=0, correction_questions=0)


class CorrectionTarget(BaseModel):
    idea_id: str
    concept_key: str
    facet_tag: FacetTag
    difficulty: Difficulty
    question_type: QuestionType
    seed_question_text: str = ""
    queue_item_id: Optional[int] = None


class LessonPlan(BaseModel):
    lesson_number: int
    book_id: str
    primary_idea_id: str
    primary_idea_title: str = ""
    review_idea_ids: List[str] = Field(default_factory=list)
    corrections: List[CorrectionTarget] = Field(default_factory=list)
    distribution: QuestionDistribution = DEFAULT_DISTRIBUTION
    curveball_item_id: Optional[int] = None
    is_fallback: bool = False

    @property
    def estimated_minutes(self) -> int:
        # one minute per question plus a short buffer
        return self.distribution.total_questions + 2


class PracticeSession(BaseModel):
    plan: LessonPlan
    questions: List[Question] = Field(default_factory=list)
    used_placeholders: bool = False
