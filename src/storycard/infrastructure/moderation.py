"""Content suitability scoring backed by the OpenAI chat completions API."""

from __future__ import annotations

import json
import logging
import os
from typing import Protocol

from dotenv import load_dotenv
from openai import AsyncOpenAI

from storycard.errors import ConfigurationFailure, ExternalServiceFailure
from storycard.models import ModerationVerdict

load_dotenv()
logger = logging.getLogger(__name__)

MODERATION_PROMPT = """You are a content moderator for children's stories. Rate the following story \
content for suitability for children ages 5-13 on a scale of 1-10, where:

1-3: Completely inappropriate (violence, adult themes, scary content, profanity)
4-6: Questionable content (mild adult themes, slightly scary, complex topics)
7-8: Generally appropriate with minor concerns
9-10: Perfectly suitable for young children

Story content to evaluate:
---
{story}
---

Respond with a JSON object in this exact format:
{{"score": <number 1-10>, "reasoning": "<brief explanation>", "concerns": "<specific concerns or 'none'>"}}"""


class ContentScorer(Protocol):
    async def score(self, text: str) -> ModerationVerdict: ...


class OpenAIContentScorer:
    """Rates story text for young listeners; raises on any service or parse failure."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        threshold: float = 7,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None:
            key = api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise ConfigurationFailure("OpenAI API key not configured for content moderation")
            client = AsyncOpenAI(api_key=key)
        self.client = client
        self.model = model
        self.threshold = threshold

    async def score(self, text: str) -> ModerationVerdict:
        logger.debug(f"Starting AI content moderation ({len(text)} chars)")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": MODERATION_PROMPT.format(story=text)}],
                max_tokens=200,
                temperature=0.1,
            )
            raw = response.choices[0].message.content or ""
            result = json.loads(raw)
            score = float(result["score"])
        except (ValueError, KeyError, TypeError, IndexError) as e:
            raise ExternalServiceFailure("OpenAI", f"Unparseable moderation response: {e}") from e
        except Exception as e:
            raise ExternalServiceFailure("OpenAI", f"Content moderation failed: {e}") from e

        reasoning = str(result.get("reasoning", ""))
        concerns = result.get("concerns")
        if concerns and concerns != "none":
            reasoning += f" Concerns: {concerns}"

        verdict = ModerationVerdict(
            is_appropriate=score >= self.threshold, score=score, reasoning=reasoning
        )
        logger.info(f"AI content moderation completed: score={score}, appropriate={verdict.is_appropriate}")
        return verdict
