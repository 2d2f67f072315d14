"""Per-file diff analysis using Pydantic AI and OpenAI."""

import asyncio
import logging
from typing import Any, Protocol

import httpx
import openai
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models.openai import OpenAIResponsesModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from gitfox.config.settings import Settings
from gitfox.errors import AnalysisError, AnalysisRequestError, AnalysisTransientError
from gitfox.prompts.diff_review_prompt import SYSTEM_PROMPT, build_user_prompt

logger = logging.getLogger(__name__)

NO_FEEDBACK_TEXT = "No AI feedback available."


class DiffAnalyzer(Protocol):
    """Text-analysis capability: review text for one file's diff."""

    async def analyze_diff(self, filename: str, patch: str) -> str: ...


def build_analysis_agent(settings: Settings) -> Agent[None, str]:
    """Create the diff analysis agent from explicit settings."""
    model = OpenAIResponsesModel(
        settings.openai_model,
        provider=OpenAIProvider(api_key=settings.openai_api_key),
    )
    return Agent(
        model=model,
        output_type=str,
        system_prompt=SYSTEM_PROMPT,
        model_settings=ModelSettings(
            max_tokens=settings.analysis_max_tokens,
            temperature=settings.analysis_temperature,
        ),
        # Retries belong to the fan-out pool, not to the agent
        retries=0,
    )


def classify_model_error(exc: Exception) -> AnalysisError:
    """Map backend failures onto transient (retriable) and request errors."""
    if isinstance(exc, AnalysisError):
        return exc
    if isinstance(exc, ModelHTTPError):
        if exc.status_code == 429 or exc.status_code >= 500:
            return AnalysisTransientError(
                f"Analysis backend returned {exc.status_code}: {exc}"
            )
        return AnalysisRequestError(
            f"Analysis backend rejected request ({exc.status_code}): {exc}"
        )
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return AnalysisTransientError("Analysis backend timed out")
    if isinstance(exc, (httpx.TransportError, openai.APIConnectionError)):
        return AnalysisTransientError(f"Analysis backend unreachable: {exc}")
    if isinstance(exc, UnexpectedModelBehavior):
        return AnalysisRequestError(f"Analysis backend misbehaved: {exc}")
    return AnalysisRequestError(f"Analysis failed: {type(exc).__name__}: {exc}")


class AgentDiffAnalyzer:
    """``DiffAnalyzer`` backed by a Pydantic AI agent with a per-call timeout."""

    def __init__(self, agent: Agent[None, str] | Any, timeout_seconds: float) -> None:
        self.agent = agent
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgentDiffAnalyzer":
        return cls(build_analysis_agent(settings), settings.analysis_timeout_seconds)

    async def analyze_diff(self, filename: str, patch: str) -> str:
        """
        Ask the model to review one file's diff.

        Returns:
            Markdown review text; a fixed notice if the model answered empty

        Raises:
            AnalysisTransientError: Timeout, rate limit, connection or 5xx
            AnalysisRequestError: The backend rejected the request
        """
        logger.debug(f"Analyzing {filename} ({len(patch)} chars of diff)")
        try:
            result = await asyncio.wait_for(
                self.agent.run(build_user_prompt(filename, patch)),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            raise classify_model_error(exc) from exc

        text = (result.output or "").strip()
        return text or NO_FEEDBACK_TEXT
