"""Question generation: the external model call, retries, and placeholders."""
from __future__ import annotations

import json
import random
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from models.lesson import IdeaContext, QuestionContent
from models.taxonomy import FACET_ORDER, Difficulty, FacetTag, QuestionType
from utils.ollama import call_llm


class GenerationError(Exception):
    """The generation service failed or returned unusable content."""


class QuestionGenerator(Protocol):
    def generate(
        self,
        idea: IdeaContext,
        count: int,
        difficulty_hint: Optional[Difficulty] = None,
        facet_hint: Optional[FacetTag] = None,
    ) -> List[QuestionContent]:
        ...


def build_prompt(
    idea: IdeaContext,
    count: int,
    difficulty_hint: Optional[Difficulty],
    facet_hint: Optional[FacetTag],
) -> str:
    facets = ", ".join(facet.value for facet in FACET_ORDER)
    lines = [
        f"Book: {idea.book_title}",
        f"Idea: {idea.title}",
        f"Description: {idea.description}",
        "",
        f"Write {count} quiz question(s) about this idea.",
        f"Tag each question with one facet from: {facets}.",
    ]
    if facet_hint is not None:
        lines.append(f"Every question must test the {facet_hint.value} facet.")
    if difficulty_hint is not None:
        lines.append(f"Difficulty: {difficulty_hint.value}.")
    if idea.seed_text:
        lines.append(f"Build on this earlier question the learner missed: {idea.seed_text}")
    lines += [
        "",
        "Respond with only a JSON array. Each element has keys:",
        '"text", "question_type" (SingleAnswer, MultiAnswer or OpenResponse), "facet_tag",',
        '"options" (list of strings, omitted for OpenResponse) and "correct_indices" (list of ints).',
    ]
    return "\n".join(lines)


def _extract_json_array(raw: str) -> List[Any]:
    start = raw.find("[")
    end = raw.rfind("]")
    if start == -1 or end <= start:
        raise GenerationError("response contained no JSON array")
    try:
        data = json.loads(raw[start:end + 1])
    except json.JSONDecodeError as exc:
        raise GenerationError(f"malformed JSON: {exc}") from exc
    if not isinstance(data, list):
        raise GenerationError("expected a JSON array of questions")
    return data


def parse_questions(raw: str) -> List[QuestionContent]:
    questions = []
    for entry in _extract_json_array(raw):
        if not isinstance(entry, dict):
            raise GenerationError("question entries must be objects")
        if "correctIndices" in entry and "correct_indices" not in entry:
            entry["correct_indices"] = entry.pop("correctIndices")
        try:
            content = QuestionContent.model_validate(entry)
        except ValidationError as exc:
            raise GenerationError(f"invalid question: {exc}") from exc
        questions.append(validate_content(content))
    return questions


def validate_content(content: QuestionContent) -> QuestionContent:
    if not content.text.strip():
        raise GenerationError("question text is empty")
    if content.question_type.is_choice:
        options = content.options or []
        indices = content.correct_indices or []
        if len(options) < 2:
            raise GenerationError("choice question needs at least two options")
        if not indices or any(i < 0 or i >= len(options) for i in indices):
            raise GenerationError("correct indices out of range")
        if content.question_type is QuestionType.SINGLE_ANSWER and len(indices) != 1:
            raise GenerationError("single-answer question needs exactly one correct index")
    return content


def randomize_options(content: QuestionContent, rng: Optional[random.Random] = None) -> QuestionContent:
    """Shuffle choice options, keeping correct_indices pointing at the same answers."""
    if not content.options or not content.question_type.is_choice:
        return content
    rng = rng or random.Random()
    order = list(range(len(content.options)))
    rng.shuffle(order)
    new_position = {old: new for new, old in enumerate(order)}
    return content.model_copy(
        update={
            "options": [content.options[old] for old in order],
            "correct_indices": sorted(new_position[i] for i in (content.correct_indices or [])),
        }
    )


class OllamaQuestionGenerator:
    """Generates questions with a local Ollama model."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, llm: Callable[..., Optional[str]] = call_llm):
        self.config = config
        self.llm = llm

    def generate(
        self,
        idea: IdeaContext,
        count: int,
        difficulty_hint: Optional[Difficulty] = None,
        facet_hint: Optional[FacetTag] = None,
    ) -> List[QuestionContent]:
        if count <= 0:
            return []
        prompt = build_prompt(idea, count, difficulty_hint, facet_hint)
        raw = self.llm(prompt, config=self.config)
        if raw is None:
            raise GenerationError("generation service unavailable")
        questions = parse_questions(raw)
        if len(questions) < count:
            raise GenerationError(f"asked for {count} questions, got {len(questions)}")
        return [randomize_options(q) for q in questions[:count]]


def generate_with_retry(
    generator: QuestionGenerator,
    idea: IdeaContext,
    count: int,
    difficulty_hint: Optional[Difficulty] = None,
    facet_hint: Optional[FacetTag] = None,
    max_attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> List[QuestionContent]:
    """Call the generator with exponential backoff. Raises GenerationError when exhausted."""
    last_error: Optional[Exception] = None
    for attempt in range(max(1, max_attempts)):
        try:
            return generator.generate(idea, count, difficulty_hint, facet_hint)
        except GenerationError as exc:
            last_error = exc
            logger.warning(
                "Generation attempt {}/{} for idea {} failed: {}",
                attempt + 1,
                max_attempts,
                idea.idea_id,
                exc,
            )
            if attempt + 1 < max_attempts:
                sleep(backoff_seconds * (2 ** attempt))
    raise GenerationError(f"generation failed after {max_attempts} attempts: {last_error}")


def placeholder_questions(
    idea: IdeaContext,
    count: int,
    facet_hint: Optional[FacetTag] = None,
    difficulty_hint: Optional[Difficulty] = None,
) -> List[QuestionContent]:
    """Minimal synthetic questions so a session can always start."""
    questions = []
    for i in range(count):
        facet = facet_hint or FACET_ORDER[i % len(FACET_ORDER)]
        questions.append(
            QuestionContent(
                text=f"Which statement best reflects the idea \"{idea.title}\"? ({facet.value})",
                options=[
                    idea.description or idea.title,
                    "It has nothing to do with the book",
                    "It contradicts the author's argument",
                    "None of these",
                ],
                correct_indices=[0],
                question_type=QuestionType.SINGLE_ANSWER,
                facet_tag=facet,
                difficulty=difficulty_hint,
            )
        )
    return questions
