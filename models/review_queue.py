from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from .taxonomy import Difficulty, FacetTag, QuestionType


class ReviewQueueItem(BaseModel):
    id: Optional[int] = None
    idea_id: str
    book_id: str
    idea_title: str = ""
    book_title: str = ""
    question_type: QuestionType
    concept_key: str
    difficulty: Difficulty
    facet_tag: FacetTag
    seed_question_text: str = ""
    is_curveball: bool = False
    added_at: datetime
    is_completed: bool = False
    completed_at: Optional[datetime] = None

    @property
    def concept_identity(self) -> tuple:
        return (self.idea_id, self.concept_key)


class IncorrectResponse(BaseModel):
    question_id: str
    user_answer: Optional[str] = None


class DailyReview(BaseModel):
    mcqs: List[ReviewQueueItem] = Field(default_factory=list)
    open_ended: List[ReviewQueueItem] = Field(default_factory=list)

    @property
    def items(self) -> List[ReviewQueueItem]:
        return self.mcqs + self.open_ended


class QueueStatistics(BaseModel):
    total_pending_mcq: int
    total_pending_open_ended: int
