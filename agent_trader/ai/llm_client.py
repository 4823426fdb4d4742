"""
Inference Client Module for Agent Trader.

This module provides the chat-completions client used by the role invoker.
It speaks the OpenAI-compatible wire format served by OpenRouter, picks a
model per pipeline role, requests JSON output, and tracks usage, cost,
a daily budget and a per-minute request limit.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, Field

from agent_trader.ai.reports import RoleKind
from agent_trader.config.settings import InferenceSettings
from agent_trader.utils.decorators import async_retry
from agent_trader.utils.exceptions import (
    AIBudgetExceededError,
    APIAuthenticationError,
    APIConnectionError,
    APIRateLimitError,
    APIResponseError,
    InferenceError,
)
from agent_trader.utils.helpers import generate_uuid
from agent_trader.utils.date_utils import now_utc, seconds_between


logger = logging.getLogger(__name__)


# USD per 1K tokens, used when the endpoint does not report cost itself.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "anthropic/claude-sonnet-4.5": {"input": 0.003, "output": 0.015},
    "anthropic/claude-haiku-4.5": {"input": 0.001, "output": 0.005},
    "deepseek/deepseek-chat-v3.1": {"input": 0.0002, "output": 0.0008},
}
DEFAULT_PRICING = {"input": 0.003, "output": 0.015}


class ChatMessage(BaseModel):
    """Chat message model."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to API format."""
        return {"role": self.role, "content": self.content}


class ChatCompletion(BaseModel):
    """Chat completion response model."""

    completion_id: str = Field(default_factory=generate_uuid)
    model: str
    content: str = Field(default="")
    finish_reason: str = Field(default="stop")

    prompt_tokens: int = Field(default=0)
    completion_tokens: int = Field(default=0)
    total_tokens: int = Field(default=0)

    cost_usd: float = Field(default=0.0)
    latency_ms: float = Field(default=0.0)
    timestamp: datetime = Field(default_factory=now_utc)


class UsageStats(BaseModel):
    """API usage statistics."""

    total_requests: int = Field(default=0)
    total_tokens: int = Field(default=0)
    total_cost_usd: float = Field(default=0.0)

    requests_today: int = Field(default=0)
    tokens_today: int = Field(default=0)
    cost_today_usd: float = Field(default=0.0)

    requests_by_role: dict[str, int] = Field(default_factory=dict)

    last_reset_date: datetime = Field(default_factory=now_utc)
    last_request_time: Optional[datetime] = None

    def update(self, role: str, tokens: int, cost: float) -> None:
        """Update usage statistics."""
        if self.last_reset_date.date() != now_utc().date():
            self.reset_daily()

        self.total_requests += 1
        self.total_tokens += tokens
        self.total_cost_usd += cost

        self.requests_today += 1
        self.tokens_today += tokens
        self.cost_today_usd += cost

        self.requests_by_role[role] = self.requests_by_role.get(role, 0) + 1
        self.last_request_time = now_utc()

    def reset_daily(self) -> None:
        """Reset daily counters."""
        self.requests_today = 0
        self.tokens_today = 0
        self.cost_today_usd = 0.0
        self.last_reset_date = now_utc()


@runtime_checkable
class InferenceClient(Protocol):
    """
    What the role invoker needs from an inference backend.

    ``invoke_model`` returns the raw reply text (expected to hold JSON) and
    raises an APIError subclass on transport failure.
    """

    async def invoke_model(self, role: RoleKind, messages: list[ChatMessage]) -> str:
        ...


class OpenRouterClient:
    """
    OpenAI-compatible chat-completions client.

    Provides functionality for:
    - Per-role model and temperature selection
    - JSON response format
    - Cost and usage tracking with a daily budget
    - Local per-minute rate limiting
    """

    def __init__(
        self,
        settings: Optional[InferenceSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize OpenRouterClient.

        Args:
            settings: Inference settings
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._settings = settings or InferenceSettings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._usage = UsageStats()
        self._rate_limit_requests: list[datetime] = []
        self._lock = asyncio.Lock()

    @property
    def usage(self) -> UsageStats:
        """Get usage statistics."""
        return self._usage

    @property
    def is_connected(self) -> bool:
        """Check if client is initialized."""
        return self._client is not None

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._settings.api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_title,
        }
        if self._settings.referer:
            headers["HTTP-Referer"] = self._settings.referer
        return headers

    async def start(self) -> None:
        """Start the client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._settings.base_url,
            headers=self._headers,
            timeout=self._settings.timeout,
            transport=self._transport,
        )
        logger.info(f"Inference client started ({self._settings.base_url})")

    async def stop(self) -> None:
        """Stop the client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Inference client stopped")

    async def __aenter__(self) -> "OpenRouterClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def invoke_model(self, role: RoleKind, messages: list[ChatMessage]) -> str:
        """
        Run one chat completion for a pipeline role.

        Args:
            role: Pipeline role (selects model and temperature)
            messages: Chat messages

        Returns:
            Raw reply content
        """
        completion = await self.chat_completion(
            messages,
            model=self._settings.model_for(role.value),
            temperature=self._settings.temperature_for(role.value),
            role=role.value,
        )
        return completion.content

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_tokens: Optional[int] = None,
        role: str = "adhoc",
        json_mode: bool = True,
    ) -> ChatCompletion:
        """
        Create a chat completion.

        Args:
            messages: Chat messages
            model: Model id
            temperature: Sampling temperature
            max_tokens: Maximum response tokens
            role: Label used for usage accounting
            json_mode: Request a JSON object response

        Returns:
            Chat completion response
        """
        model = model or self._settings.default_model

        if not self._check_budget():
            raise AIBudgetExceededError(
                f"Daily inference budget of ${self._settings.daily_budget:.2f} exhausted"
            )

        await self._check_rate_limit()

        if not self._client:
            await self.start()

        request_body: dict[str, Any] = {
            "model": model,
            "messages": [msg.to_dict() for msg in messages],
            "temperature": temperature,
            "max_tokens": max_tokens or self._settings.max_tokens,
        }
        if json_mode:
            request_body["response_format"] = {"type": "json_object"}

        start_time = now_utc()

        try:
            response = await self._make_request(request_body)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise APIAuthenticationError("Invalid inference API key", cause=e)
            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                raise APIRateLimitError(
                    "Inference rate limit exceeded",
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    cause=e,
                )
            raise InferenceError(f"Inference API error: HTTP {status}", cause=e)
        except httpx.TimeoutException as e:
            raise APIConnectionError("Inference API timeout", cause=e)
        except httpx.HTTPError as e:
            raise APIConnectionError(f"Inference API connection failed: {e}", cause=e)
        except ValueError as e:
            raise APIResponseError("Inference API returned non-JSON body", cause=e)

        latency_ms = seconds_between(start_time, now_utc()) * 1000
        completion = self._parse_response(response, model, latency_ms)
        self._usage.update(role, completion.total_tokens, completion.cost_usd)

        logger.debug(
            f"Completion for {role} in {latency_ms:.0f}ms",
            extra={"role": role, "model": completion.model, "tokens": completion.total_tokens},
        )
        return completion

    @async_retry(max_attempts=2, delay=0.5, exceptions=(httpx.TransportError,))
    async def _make_request(self, request_body: dict[str, Any]) -> dict[str, Any]:
        """Make API request with retry."""
        response = await self._client.post("/chat/completions", json=request_body)
        response.raise_for_status()
        return response.json()

    def _parse_response(
        self,
        response: dict[str, Any],
        model: str,
        latency_ms: float,
    ) -> ChatCompletion:
        """Parse API response into ChatCompletion."""
        if "error" in response and not response.get("choices"):
            message = response["error"].get("message", "unknown error") if isinstance(response["error"], dict) else response["error"]
            raise InferenceError(f"Inference API error: {message}")

        choices = response.get("choices") or []
        if not choices:
            raise APIResponseError("Inference API returned no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        usage = response.get("usage") or {}

        prompt_tokens = int(usage.get("prompt_tokens", 0) or 0)
        completion_tokens = int(usage.get("completion_tokens", 0) or 0)
        total_tokens = int(usage.get("total_tokens", prompt_tokens + completion_tokens) or 0)

        cost = usage.get("cost")
        if not isinstance(cost, (int, float)):
            cost = self._calculate_cost(model, prompt_tokens, completion_tokens)

        return ChatCompletion(
            completion_id=response.get("id") or generate_uuid(),
            model=response.get("model", model),
            content=message.get("content") or "",
            finish_reason=choice.get("finish_reason") or "stop",
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost_usd=float(cost),
            latency_ms=latency_ms,
        )

    @staticmethod
    def _calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Calculate API cost."""
        pricing = MODEL_PRICING.get(model, DEFAULT_PRICING)
        input_cost = (prompt_tokens / 1000) * pricing["input"]
        output_cost = (completion_tokens / 1000) * pricing["output"]
        return round(input_cost + output_cost, 6)

    async def _check_rate_limit(self) -> None:
        """Check and enforce rate limits."""
        async with self._lock:
            now = now_utc()
            minute_ago = now - timedelta(minutes=1)
            self._rate_limit_requests = [
                t for t in self._rate_limit_requests
                if t > minute_ago
            ]

            if len(self._rate_limit_requests) >= self._settings.rate_limit_rpm:
                wait_time = (self._rate_limit_requests[0] - minute_ago).total_seconds()
                logger.warning(f"Rate limit reached, waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time + 0.1)

            self._rate_limit_requests.append(now_utc())

    def _check_budget(self) -> bool:
        """Check if within the daily budget."""
        if self._usage.last_reset_date.date() != now_utc().date():
            self._usage.reset_daily()
        if self._settings.daily_budget and self._usage.cost_today_usd >= self._settings.daily_budget:
            logger.warning("Daily inference budget exceeded")
            return False
        return True

    def get_statistics(self) -> dict[str, Any]:
        """Get client statistics."""
        return {
            "connected": self.is_connected,
            "usage": self._usage.model_dump(mode="json"),
        }

    def __repr__(self) -> str:
        return f"OpenRouterClient(base_url={self._settings.base_url!r}, connected={self.is_connected})"
