import json
import os
import re

import openai
from openai import AsyncOpenAI

from household_categorizer.errors import (
    ClassifierError,
    ClassifierTimeout,
    MalformedResponseError,
)
from household_categorizer.logger import get_logger

from .base import RemoteClassifier
from .remote import validate_categories

logger = get_logger(__name__)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def _retry_after_from(exc: openai.APIStatusError) -> float | None:
    raw = exc.response.headers.get("retry-after") if exc.response is not None else None
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class LLMClassifier(RemoteClassifier):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        categories: list[str] | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.client = client or AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model
        self.categories = categories

    def build_prompt(self, descriptions: list[str]) -> str:
        lines = "\n".join(f"{index}. {text}" for index, text in enumerate(descriptions, start=1))
        allowed = ""
        if self.categories:
            allowed = f"\nUse ONLY these categories: {', '.join(self.categories)}"
        return (
            "Categorize each bank transaction into a personal finance category."
            f"{allowed}\n\n"
            f"Transactions:\n{lines}\n\n"
            f"Return ONLY a JSON array of exactly {len(descriptions)} category names, "
            "in the same order as the transactions. Use 'Uncategorized' when unsure."
        )

    async def classify_batch(self, descriptions: list[str]) -> list[str]:
        if not descriptions:
            return []

        try:
            response = await self.client.responses.create(
                model=self.model,
                instructions="You are a financial transaction categorizer. Reply with JSON only.",
                input=self.build_prompt(descriptions),
                temperature=0.0,
            )
        except openai.APITimeoutError as exc:
            raise ClassifierTimeout(f"LLM timed out: {exc}") from exc
        except openai.APIStatusError as exc:
            raise ClassifierError(
                f"LLM returned HTTP {exc.status_code}",
                status_code=exc.status_code,
                retry_after=_retry_after_from(exc),
            ) from exc
        except openai.APIConnectionError as exc:
            raise ClassifierError(f"LLM connection failed: {exc}") from exc

        text = self._extract_output_text(response)
        if not text:
            raise MalformedResponseError("LLM returned no text")
        match = _JSON_ARRAY.search(text)
        if not match:
            raise MalformedResponseError(f"No JSON array in LLM output: {text[:200]}")
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Invalid JSON in LLM output: {exc}") from exc

        categories = validate_categories({"categories": parsed}, len(descriptions))
        if self.categories:
            allowed = {name.casefold(): name for name in self.categories}
            categories = [allowed.get(name.casefold(), "") for name in categories]
        return categories

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text:
            return output_text

        parts: list[str] = []
        for item in getattr(response, "output", None) or []:
            for block in getattr(item, "content", None) or []:
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)
        return "".join(parts) or None
