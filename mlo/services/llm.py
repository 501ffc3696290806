"""
LLM Service

Thin wrapper over an injected ``call(prompt) -> list[str]`` capability,
used by the derivation stage for summarization and by recognition to
settle gray-band matches.
"""

import json
from typing import Any, Protocol

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.errors import LLMError, OperationTimeoutError
from mlo.models.recognition import Disambiguation

logger = structlog.get_logger(__name__)


SUMMARY_PROMPT = """Summarize the following memory in at most {max_length} characters.
Keep names, numbers and decisions. Return only the summary.

{content}"""

DISAMBIGUATION_PROMPT = """Decide whether these two data objects describe the same real-world entity.

OBJECT 1 (candidate):
{candidate}

OBJECT 2 (existing):
{existing}

An algorithmic comparison scored them {confidence:.3f} (1.0 = identical, 0.0 = unrelated),
which is too close to call.

Compare the identifying values (names, titles, locations, dates). Allow for spelling
variants, abbreviations and updated details, but only answer true when you are confident.

Respond with JSON only:
{{"is_match": true/false, "confidence": 0.0-1.0, "reasoning": "one sentence"}}"""


class LLMCaller(Protocol):
    """External LLM-calling capability."""

    async def call(self, prompt: str) -> list[str]:
        ...


class LLMService:
    """Retrying, deadline-aware access to the LLM capability."""

    def __init__(self, caller: LLMCaller, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._caller = caller

    async def complete(self, ctx: TenantContext, prompt: str) -> str:
        """Run a prompt and join the returned response chunks."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.retry_attempts),
                wait=wait_exponential(
                    multiplier=self.settings.retry_wait_multiplier,
                    min=self.settings.retry_wait_min,
                    max=self.settings.retry_wait_max,
                ),
                retry=retry_if_not_exception_type(OperationTimeoutError),
                reraise=True,
            ):
                with attempt:
                    responses = await ctx.guard(self._caller.call(prompt))
        except OperationTimeoutError:
            raise
        except Exception as e:
            logger.error("LLM call failed", tenant_id=ctx.tenant_id, error=str(e))
            raise LLMError(f"LLM call failed: {e}") from e

        text = "".join(r for r in responses if r).strip()
        logger.debug("LLM call completed", prompt_length=len(prompt), response_length=len(text))
        return text

    async def summarize(self, ctx: TenantContext, content: str, max_length: int) -> str:
        summary = await self.complete(
            ctx, SUMMARY_PROMPT.format(max_length=max_length, content=content[:4000])
        )
        if not summary:
            raise LLMError("LLM returned an empty summary")
        return summary[:max_length]

    async def disambiguate(
        self,
        ctx: TenantContext,
        candidate: Any,
        existing: Any,
        confidence: float,
        threshold: float,
        custom_prompt: str | None = None,
    ) -> Disambiguation:
        """
        Ask whether two payloads describe the same entity.

        A failed call or an unparseable answer falls back to comparing
        ``confidence`` against ``threshold``.
        """
        candidate_json = json.dumps(candidate, indent=2, default=str, ensure_ascii=False)
        existing_json = json.dumps(existing, indent=2, default=str, ensure_ascii=False)
        if custom_prompt:
            prompt = (
                custom_prompt.replace("{candidate}", candidate_json)
                .replace("{existing}", existing_json)
                .replace("{confidence}", f"{confidence:.3f}")
            )
        else:
            prompt = DISAMBIGUATION_PROMPT.format(
                candidate=candidate_json,
                existing=existing_json,
                confidence=confidence,
            )

        try:
            response = await self.complete(ctx, prompt)

            # Clean response (remove markdown code blocks if present)
            cleaned = response.strip()
            if cleaned.startswith("```"):
                cleaned = cleaned.split("```")[1]
                if cleaned.startswith("json"):
                    cleaned = cleaned[4:]
            cleaned = cleaned.strip()

            data = json.loads(cleaned)
            return Disambiguation(
                is_match=bool(data["is_match"]),
                confidence=min(1.0, max(0.0, float(data.get("confidence", confidence)))),
                reasoning=str(data.get("reasoning") or ""),
            )
        except (LLMError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "LLM disambiguation failed, using threshold",
                tenant_id=ctx.tenant_id,
                error=str(e),
            )
            return Disambiguation(
                is_match=confidence >= threshold,
                confidence=confidence,
                reasoning=f"LLM disambiguation failed, decided by threshold at {confidence:.3f}",
            )
