from enum import Enum
from typing import Optional


class FacetTag(str, Enum):
    """The eight ways an idea is tested, lowest order first."""

    RECALL = "Recall"
    REFRAME = "Reframe"
    WHY_IMPORTANT = "WhyImportant"
    APPLY = "Apply"
    WHEN_USE = "WhenUse"
    CONTRAST = "Contrast"
    CRITIQUE = "Critique"
    HOW_WIELD = "HowWield"

    @property
    def rank(self) -> int:
        return FACET_ORDER.index(self)


FACET_ORDER = list(FacetTag)
TOTAL_FACETS = len(FACET_ORDER)

HIGHEST_ORDER_FACET = FacetTag.HOW_WIELD
# Facets answered in the learner's own words; curveballs on these are open response.
OPEN_RESPONSE_FACETS = frozenset({FacetTag.HOW_WIELD, FacetTag.REFRAME})


class QuestionType(str, Enum):
    SINGLE_ANSWER = "SingleAnswer"
    MULTI_ANSWER = "MultiAnswer"
    OPEN_RESPONSE = "OpenResponse"

    @property
    def is_choice(self) -> bool:
        return self is not QuestionType.OPEN_RESPONSE


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


def concept_key(facet: FacetTag, difficulty: Difficulty) -> str:
    """Key for one facet+difficulty combination, e.g. 'Apply-Medium'."""
    return f"{FacetTag(facet).value}-{Difficulty(difficulty).value}"


def facet_from_concept_key(key: str) -> Optional[FacetTag]:
    raw = (key or "").split("-", 1)[0]
    try:
        return FacetTag(raw)
    except ValueError:
        return None


def difficulty_for_facet(facet: FacetTag) -> Difficulty:
    """Default difficulty band for a facet when a generator does not report one."""
    if facet in (FacetTag.RECALL, FacetTag.REFRAME, FacetTag.WHY_IMPORTANT):
        return Difficulty.EASY
    if facet in (FacetTag.APPLY, FacetTag.WHEN_USE):
        return Difficulty.MEDIUM
    return Difficulty.HARD
