from .taxonomy import FacetTag, QuestionType, Difficulty, concept_key
from .coverage import Attempt, IdeaCoverage, MissedFacetRecord
from .curveball import CurveballState
from .review_queue import ReviewQueueItem, IncorrectResponse, DailyReview, QueueStatistics
from .book import Book, BookCreate, Idea, IdeaStub
from .lesson import (
    CorrectionTarget,
    IdeaContext,
    LessonPlan,
    PracticeSession,
    Question,
    QuestionCategory,
    QuestionContent,
    QuestionDistribution,
)

__all__ = [
    'FacetTag', 'QuestionType', 'Difficulty', 'concept_key',
    'Attempt', 'IdeaCoverage', 'MissedFacetRecord', 'CurveballState',
    'ReviewQueueItem', 'IncorrectResponse', 'DailyReview', 'QueueStatistics',
    'Book', 'BookCreate', 'Idea', 'IdeaStub',
    'CorrectionTarget', 'IdeaContext', 'LessonPlan', 'PracticeSession', 'Question',
    'QuestionCategory', 'QuestionContent', 'QuestionDistribution',
]
