"""
Language-model scoring over httpx.

Supports OpenAI-style chat completions and the Anthropic messages API.
Transport failures, 429 and 5xx are retried through ``retry_async``;
auth rejections and other 4xx responses are permanent.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rfpscout.core.backends.base import BackendError, TransientFetchError
from rfpscout.core.backends.http_backend import check_response
from rfpscout.core.config.loader import ConfigError
from rfpscout.core.config.models import AnalysisConfig, BudgetConfig, KeywordConfig, ScoringProvider
from rfpscout.core.fetch.retries import PermanentError, RetryConfig, retry_async

from .scorers import ScoringCollaborator, ScoringRequest

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = {
    ScoringProvider.OPENAI: "https://api.openai.com/v1/chat/completions",
    ScoringProvider.ANTHROPIC: "https://api.anthropic.com/v1/messages",
}

DEFAULT_MODELS = {
    ScoringProvider.OPENAI: "gpt-4o-mini",
    ScoringProvider.ANTHROPIC: "claude-3-5-haiku-latest",
}

ANTHROPIC_VERSION = "2023-06-01"


class LLMError(BackendError, PermanentError):
    """The model endpoint answered, but not with usable text."""


class LLMClient:
    """Minimal chat client for one provider."""

    def __init__(
        self,
        provider: ScoringProvider,
        api_key: str,
        *,
        model: str | None = None,
        endpoint: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if provider not in DEFAULT_ENDPOINTS:
            raise ValueError(f"Unsupported provider: {provider}")
        self.provider = provider
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[provider]
        self.endpoint = endpoint or DEFAULT_ENDPOINTS[provider]
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self._transport = transport

    @classmethod
    def from_config(cls, config: AnalysisConfig, retry: RetryConfig | None = None) -> "LLMClient":
        if not config.api_key:
            raise ConfigError(
                f"analysis.api_key is required for provider '{config.provider.value}'",
                details=f"provider={config.provider.value}",
            )
        return cls(
            config.provider,
            config.api_key,
            model=config.model,
            endpoint=config.endpoint,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_seconds,
            retry=retry,
        )

    def _request(self, prompt: str) -> tuple[dict[str, str], dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.provider == ScoringProvider.ANTHROPIC:
            headers["x-api-key"] = self.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers, body

    def _extract_text(self, data: Any) -> str:
        try:
            if self.provider == ScoringProvider.ANTHROPIC:
                return "".join(
                    block.get("text", "") for block in data["content"] if block.get("type") == "text"
                )
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMError(f"Unexpected response shape: {e}", url=self.endpoint) from e

    async def _post_once(self, client: httpx.AsyncClient, headers: dict[str, str], body: dict[str, Any]) -> str:
        try:
            response = await client.post(self.endpoint, headers=headers, json=body)
        except httpx.TransportError as e:
            raise TransientFetchError(f"Transport error: {e}", url=self.endpoint, cause=e) from e
        except httpx.HTTPError as e:
            raise LLMError(f"HTTP error: {e}", url=self.endpoint, cause=e) from e
        check_response(response, self.endpoint)
        try:
            data = response.json()
        except ValueError as e:
            raise LLMError("Response body is not JSON", url=self.endpoint, cause=e) from e
        return self._extract_text(data)

    async def complete(self, prompt: str) -> str:
        """Send one user prompt and return the reply text."""
        headers, body = self._request(prompt)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            text = await retry_async(self._post_once, client, headers, body, config=self.retry)
        logger.debug(f"{self.provider.value} reply: {len(text)} chars")
        return text


FIT_PROMPT = """\
You are an expert RFP analyzer for a web design and development agency.

AGENCY PROFILE:
- Target sectors: {topical}
- Preferred technologies: {preferred}
- Acceptable technologies: {acceptable}
- Project types: {project_types}
- Budget range: ${min_acceptable:,.0f} minimum acceptable, ${min_preferred:,.0f}+ preferred

RED FLAGS TO AVOID:
{red_flags}

Analyze the RFP below and score it 0-100 for fit with this profile.

Respond in this exact JSON format:
{{
  "fitScore": [0-100 integer],
  "fitRating": "[excellent|good|poor|rejected]",
  "reasoning": "[detailed explanation of fit assessment]",
  "keyRequirements": ["requirement1", "requirement2"],
  "budgetEstimate": "[extracted budget info or 'not specified']",
  "technologies": ["tech1", "tech2"],
  "institutionType": "[university|college|school|government|other]",
  "projectType": "[redesign|development|maintenance|migration|other]",
  "redFlags": ["flag1"],
  "opportunities": ["opportunity1"],
  "recommendation": "[pursue|consider|skip]",
  "confidence": [0-100 integer]
}}

RFP METADATA:
- Title: {title}
- Institution: {institution}
- Posted Date: {posted}
- Due Date: {due}
- URL: {url}

EXTRACTED DOCUMENT CONTENT:
{content}
"""


def build_fit_prompt(request: ScoringRequest, keywords: KeywordConfig, budget: BudgetConfig) -> str:
    return FIT_PROMPT.format(
        topical=", ".join(keywords.topical) or "any",
        preferred=", ".join(keywords.technologies_preferred) or "any",
        acceptable=", ".join(keywords.technologies_acceptable) or "none listed",
        project_types=", ".join(keywords.project_types) or "any",
        min_acceptable=budget.min_acceptable,
        min_preferred=budget.min_preferred,
        red_flags="\n".join(f"- {flag}" for flag in keywords.red_flags) or "- none",
        title=request.title,
        institution=request.institution or "Not specified",
        posted=request.posted_at.date().isoformat() if request.posted_at else "Not specified",
        due=request.due_at.date().isoformat() if request.due_at else "Not specified",
        url=request.detail_url,
        content=request.content or "No document content available",
    )


class LLMScorer(ScoringCollaborator):
    """Scores listings by prompting a language model."""

    def __init__(self, client: LLMClient, keywords: KeywordConfig, budget: BudgetConfig | None = None) -> None:
        self.client = client
        self.keywords = keywords
        self.budget = budget or BudgetConfig()
        self.name = client.provider.value

    async def score(self, request: ScoringRequest) -> str:
        return await self.client.complete(build_fit_prompt(request, self.keywords, self.budget))

    async def complete(self, prompt: str) -> str:
        return await self.client.complete(prompt)
