"""Question generation for a brand visibility report."""

import logging
from collections.abc import Iterator

from visibility_report.collectors.completion import CompletionClient
from visibility_report.core.config import PipelineConfig
from visibility_report.core.exceptions import QuestionGenerationError, ResponseParseError
from visibility_report.pipeline.parsing import extract_json_array
from visibility_report.pipeline.retry import with_retry

logger = logging.getLogger(__name__)

GENERATION_SYSTEM_PROMPT = "You are an expert in branding and AI assistants. Return a JSON array of questions."

# {brand} and {competitor} are substituted; competitors are cycled across rounds
FILLER_TEMPLATES = [
    "What are the advantages of {brand} over its competitors?",
    "What do people say about {brand} on social media?",
    "How does {brand} compare to {competitor}?",
    "What is the story behind {brand}?",
    "What are the most popular products or services of {brand}?",
    "What makes {brand} unique in its sector?",
    "Are there any controversies related to {brand}?",
    "What is the customer service reputation of {brand}?",
    "How has {brand} evolved over time?",
    "What values does the {brand} brand stand for?",
    "What are the most common criticisms of {brand}?",
    "Does {brand} run any social responsibility programs?",
    "How strong is the international presence of {brand}?",
    "What is the user experience like with {brand}?",
    "What technologies does {brand} use in its products?",
    "Who are the key executives at {brand}?",
    "What is the marketing strategy of {brand}?",
    "How does {brand} handle customer complaints?",
    "What current promotions does {brand} offer?",
    "Should I choose {brand} or {competitor}?",
]

# Used once the plain templates are exhausted
AUDIENCE_FRAMINGS = [
    "As a first-time customer, ",
    "For a small business, ",
    "For a large company, ",
    "As a student, ",
    "As a long-time user, ",
]


def build_generation_prompt(brand: str, competitors: list[str], min_questions: int, required: int) -> str:
    competitors_str = ", ".join(competitors) if competitors else "none given"
    return (
        f"Write questions a real user might ask an AI assistant where the brand {brand} "
        f"or one of its competitors ({competitors_str}) would naturally come up. "
        f"Generate at least {min_questions} questions, ideally {required}. "
        "Return only a JSON array of strings."
    )


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


def _filler_candidates(brand: str, competitors: list[str]) -> Iterator[str]:
    rivals = competitors or ["other competitors"]
    for framing in ["", *AUDIENCE_FRAMINGS]:
        for rival in rivals:
            for template in FILLER_TEMPLATES:
                question = template.format(brand=brand, competitor=rival)
                yield f"{framing}{_lower_first(question)}" if framing else question


def normalize_questions(items: list) -> list[str]:
    """Keep non-empty strings, stripped, first occurrence wins (case-insensitive)."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        text = item.strip()
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def pad_questions(questions: list[str], brand: str, competitors: list[str], required: int) -> list[str]:
    """Append templated filler until *required* questions exist, never repeating one."""
    result = list(questions)
    seen = {q.lower() for q in result}
    for candidate in _filler_candidates(brand, competitors):
        if len(result) >= required:
            break
        if candidate.lower() in seen:
            continue
        seen.add(candidate.lower())
        result.append(candidate)

    if len(result) < required:
        raise QuestionGenerationError(f"Could not pad questions to {required}: only {len(result)} unique questions")
    return result


class QuestionGenerator:
    """Produces exactly ``config.required_questions`` questions for a brand."""

    def __init__(self, client: CompletionClient, config: PipelineConfig):
        self.client = client
        self.config = config

    async def generate(self, brand: str, competitors: list[str]) -> list[str]:
        cfg = self.config
        prompt = build_generation_prompt(brand, competitors, cfg.min_questions, cfg.required_questions)

        completion = await with_retry(
            lambda: self.client.complete(GENERATION_SYSTEM_PROMPT, prompt),
            max_retries=cfg.max_retries,
            base_delay=cfg.retry_base_delay,
        )

        try:
            raw = extract_json_array(completion.text)
        except ResponseParseError as e:
            raise QuestionGenerationError(f"Failed to parse questions: {e}") from e

        questions = normalize_questions(raw)
        logger.info("Received %d usable questions for brand=%s", len(questions), brand)

        if len(questions) < cfg.min_questions:
            raise QuestionGenerationError(
                f"Expected at least {cfg.min_questions} questions, got {len(questions)}"
            )

        if len(questions) < cfg.required_questions:
            logger.info("Padding with %d template questions", cfg.required_questions - len(questions))
            return pad_questions(questions, brand, competitors, cfg.required_questions)

        if len(questions) > cfg.required_questions:
            logger.info("Truncating %d questions to %d", len(questions), cfg.required_questions)
        return questions[: cfg.required_questions]
