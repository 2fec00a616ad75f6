"""AI relevance scoring of discovered pages against a channel's topic."""

from __future__ import annotations

from ..domain.errors import ContentProcessingError
from ..domain.models import ChannelContext, PageInfo, ScoredPage
from ..llm.parsing import parse_json_array
from ..llm.runtime import LLMProfile, LLMRuntime
from ..observability.logger import get_logger

logger = get_logger(__name__)

# Score for pages the model left out of its answer.
DEFAULT_SCORE = 0.5

SCORING_SYSTEM_PROMPT = """You are a content relevance scoring assistant. Score how relevant each web page is for a specific content channel.

Channel context: {context}

Score each page from 0.0 (completely irrelevant) to 1.0 (highly relevant).
Consider the URL path, page title, and how well it matches the channel's niche.

Return ONLY a valid JSON array of objects with "index" (1-based) and "score" fields.
Example: [{{"index": 1, "score": 0.8}}, {{"index": 2, "score": 0.1}}]"""


def describe_context(context: ChannelContext) -> str:
    parts = []
    if context.niche:
        parts.append(f"Niche: {context.niche}")
    if context.description:
        parts.append(f"Description: {context.description}")
    if context.language:
        parts.append(f"Language: {context.language}")
    return ", ".join(parts) or "General content channel"


def format_page_list(pages: list[PageInfo]) -> str:
    lines = []
    for i, p in enumerate(pages, start=1):
        line = f"{i}. URL: {p.url}"
        if p.title:
            line += f" | Title: {p.title}"
        lines.append(line)
    return "\n".join(lines)


def parse_scores(response: str, count: int) -> dict[int, float]:
    """Map 1-based page index to a score clamped to [0, 1]."""
    scores: dict[int, float] = {}
    for entry in parse_json_array(response):
        if not isinstance(entry, dict):
            continue
        try:
            index = int(entry.get("index"))
            score = float(entry.get("score"))
        except (TypeError, ValueError):
            continue
        if 1 <= index <= count and index not in scores:
            scores[index] = min(1.0, max(0.0, score))
    return scores


class RelevanceScorer:
    def __init__(self, *, llm: LLMRuntime, profile: LLMProfile, batch_size: int = 100):
        self._llm = llm
        self._profile = profile
        self._batch_size = max(1, int(batch_size))

    async def score(self, pages: list[PageInfo], context: ChannelContext) -> list[ScoredPage]:
        """Score every page; output order matches input order.

        Raises ContentProcessingError (or NetworkTimeoutError) when the model
        cannot be reached or its answer is not a JSON array.
        """
        if not pages:
            return []

        system_prompt = SCORING_SYSTEM_PROMPT.format(context=describe_context(context))
        out: list[ScoredPage] = []
        for start in range(0, len(pages), self._batch_size):
            batch = pages[start : start + self._batch_size]
            prompt = f"Score these {len(batch)} pages for relevance:\n\n{format_page_list(batch)}"
            response = await self._llm.complete(self._profile.request(prompt, system_prompt=system_prompt))
            try:
                scores = parse_scores(response, len(batch))
            except ContentProcessingError:
                logger.warning("relevance_response_unparsable", batch_start=start, batch_size=len(batch))
                raise

            missing = len(batch) - len(scores)
            if missing:
                logger.info("relevance_scores_missing", batch_start=start, missing=missing)
            out.extend(
                ScoredPage(url=p.url, score=scores.get(i, DEFAULT_SCORE)) for i, p in enumerate(batch, start=1)
            )

        logger.info("relevance_scoring_completed", pages=len(pages))
        return out
