"""Critic self-correction.

A second model pass reviews a response, and when the review asks for it,
rewrites the response a bounded number of times. The critic never raises:
if the model fails, the original response is passed through unreviewed.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from flowchord.core.context import LogType
from flowchord.core.types import Message

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext
    from flowchord.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)

CRITIC_SYSTEM_PROMPT = """You are a critical reviewer analyzing AI-generated responses for errors.

Your job is to:
1. Check for factual accuracy and logical consistency
2. Identify hallucinations (made-up facts, non-existent references)
3. Detect reasoning gaps or unsupported conclusions
4. Verify the response actually answers the original question

FORMAT YOUR REVIEW:
Accuracy Score: [1-10]
Issues Found:
- [Issue 1 description]
- [Issue 2 description]
Hallucination Risk: [LOW/MEDIUM/HIGH]
Needs Correction: [YES/NO]
Suggested Fix: [If YES, describe what needs to be fixed]"""

REVIEW_PROMPT = """Review this AI response:

QUESTION: {question}

RESPONSE: {response}

Analyze for accuracy, hallucinations, and reasoning gaps."""

CORRECTION_PROMPT = """The following response was flagged for correction:

ORIGINAL QUESTION: {question}

ORIGINAL RESPONSE: {response}

ISSUES IDENTIFIED:
{issues}

Please provide a corrected response that:
1. Fixes the identified issues
2. Maintains the helpful parts of the original
3. Is factually accurate and logically consistent

Corrected Response:"""

QUICK_CHECK_PROMPT = """Quick check: Does this response to "{question}..." contain obvious errors or hallucinations?

RESPONSE: {response}...

Answer only: PASS or FAIL with brief reason."""

_SCORE = re.compile(r"Accuracy Score:\s*(\d+)", re.IGNORECASE)
_ISSUES = re.compile(r"Issues Found:\s*([\s\S]*?)(?=Hallucination Risk:|$)", re.IGNORECASE)
_RISK = re.compile(r"Hallucination Risk:\s*(LOW|MEDIUM|HIGH)", re.IGNORECASE)
_NEEDS_FIX = re.compile(r"Needs Correction:\s*(YES|NO)", re.IGNORECASE)
_FIX = re.compile(r"Suggested Fix:\s*(.+?)$", re.IGNORECASE | re.DOTALL)


class Review(BaseModel):
    """Parsed critic review."""

    score: int = 5
    issues: list[str] = Field(default_factory=list)
    hallucination_risk: str = "MEDIUM"
    needs_correction: bool = False
    suggested_fix: str | None = None


class CriticResult(BaseModel):
    """Outcome of a review, with the corrected response if one was made."""

    approved: bool
    score: int | None = None
    issues: list[str] = Field(default_factory=list)
    hallucination_risk: str = "UNKNOWN"
    corrected_response: str | None = None
    original_response: str
    iterations: int = 0
    error: str | None = None

    @property
    def final_response(self) -> str:
        return self.corrected_response or self.original_response

    def to_output(self) -> dict[str, Any]:
        """Payload emitted by the critic node."""
        return {
            "approved": self.approved,
            "score": self.score,
            "issues": self.issues,
            "hallucinationRisk": self.hallucination_risk,
            "correctedResponse": self.corrected_response,
            "originalResponse": self.original_response,
            "iterations": self.iterations,
            "output": self.final_response,
            **({"error": self.error} if self.error else {}),
        }


def parse_review(text: str) -> Review:
    """Read the structured fields out of a review.

    When the model omits ``Needs Correction`` it is inferred from a score
    below 6 or a HIGH hallucination risk.
    """
    review = Review()

    score = _SCORE.search(text)
    if score:
        review.score = int(score.group(1))

    issues = _ISSUES.search(text)
    if issues:
        parts = re.split(r"\n-\s*", issues.group(1))
        review.issues = [p.strip().lstrip("-").strip() for p in parts if p.strip().lstrip("-").strip()]

    risk = _RISK.search(text)
    if risk:
        review.hallucination_risk = risk.group(1).upper()

    needs_fix = _NEEDS_FIX.search(text)
    if needs_fix:
        review.needs_correction = needs_fix.group(1).upper() == "YES"
    else:
        review.needs_correction = review.score < 6 or review.hallucination_risk == "HIGH"

    fix = _FIX.search(text)
    if fix:
        review.suggested_fix = fix.group(1).strip()

    return review


class Critic:
    """Review-and-correct loop over an injected provider.

    Example:
        >>> critic = Critic(provider)
        >>> result = await critic.review("What is 2+2?", "5", context=context)
        >>> result.corrected_response
        '4'
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        *,
        max_iterations: int = 2,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        response_max_tokens: int = 2000,
    ) -> None:
        self._provider = provider
        self.max_iterations = max_iterations
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.response_max_tokens = response_max_tokens

    async def _ask(self, system: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        response = await self._provider.complete(
            [Message.system(system), Message.user(prompt)],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content.strip()

    async def quick_check(self, question: str, response: str) -> tuple[bool, list[str]]:
        """Cheap PASS/FAIL re-check of a correction. Errors count as a pass."""
        prompt = QUICK_CHECK_PROMPT.format(question=question[:100], response=response[:500])
        try:
            verdict = await self._ask(
                "You are a quick fact-checker. Be concise.",
                prompt,
                temperature=0.2,
                max_tokens=100,
            )
        except Exception as e:
            logger.debug("Critic quick check failed: %s", e)
            return False, []
        lowered = verdict.lower()
        passing = "pass" in lowered or "fail" not in lowered
        return (not passing), ([] if passing else [verdict])

    async def review(
        self,
        question: str,
        response: str,
        *,
        auto_correct: bool = True,
        context: NodeContext | None = None,
    ) -> CriticResult:
        """Review ``response`` and correct it if the review asks for it."""

        def log(type: LogType, message: str) -> None:
            if context is not None:
                context.add_log(type, message)

        log(LogType.INFO, "Starting critic review...")
        try:
            review_text = await self._ask(
                CRITIC_SYSTEM_PROMPT,
                REVIEW_PROMPT.format(question=question, response=response),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            review = parse_review(review_text)
            log(
                LogType.WARNING if review.needs_correction else LogType.SUCCESS,
                f"Critic score: {review.score}/10 | Hallucination risk: {review.hallucination_risk}",
            )

            if not review.needs_correction or not auto_correct or self.max_iterations <= 0:
                return CriticResult(
                    approved=not review.needs_correction,
                    score=review.score,
                    issues=review.issues,
                    hallucination_risk=review.hallucination_risk,
                    original_response=response,
                )

            corrected = response
            issues = review.issues
            iteration = 0
            while iteration < self.max_iterations:
                iteration += 1
                if context is not None:
                    context.heartbeat()
                corrected = await self._ask(
                    "You are a helpful assistant providing accurate, corrected responses.",
                    CORRECTION_PROMPT.format(
                        question=question,
                        response=corrected,
                        issues="\n- ".join(issues),
                    ),
                    temperature=0.7,
                    max_tokens=self.response_max_tokens,
                )
                log(LogType.INFO, f"Correction iteration {iteration} complete")

                if iteration < self.max_iterations:
                    still_wrong, issues = await self.quick_check(question, corrected)
                    if not still_wrong:
                        break

            return CriticResult(
                approved=True,
                score=review.score,
                issues=review.issues,
                hallucination_risk=review.hallucination_risk,
                corrected_response=corrected,
                original_response=response,
                iterations=iteration,
            )
        except Exception as e:
            log(LogType.ERROR, f"Critic review failed: {e}")
            return CriticResult(
                approved=True,
                original_response=response,
                error=str(e),
            )
