"""
Role Invoker Module for Agent Trader.

One inference call for one pipeline role, bounded by a timeout, turned into
either a typed report or a RoleFailure. Nothing raised by the inference
client escapes into orchestration.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from agent_trader.ai.llm_client import InferenceClient
from agent_trader.ai.prompts import PromptManager
from agent_trader.ai.reports import FailureCause, RoleFailure, RoleKind
from agent_trader.ai.response_parser import ResponseParser
from agent_trader.core.models import AnalysisContext
from agent_trader.utils.exceptions import APIError


logger = logging.getLogger(__name__)


class RoleInvoker:
    """Calls the inference service for a single role and validates the reply."""

    def __init__(
        self,
        client: InferenceClient,
        prompts: Optional[PromptManager] = None,
        parser: Optional[ResponseParser] = None,
        default_timeout: float = 90.0,
    ) -> None:
        self._client = client
        self._prompts = prompts or PromptManager()
        self._parser = parser or ResponseParser()
        self._default_timeout = default_timeout

    @property
    def parser(self) -> ResponseParser:
        return self._parser

    async def invoke(
        self,
        role: RoleKind,
        context: AnalysisContext,
        inputs: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Union[Any, RoleFailure]:
        """
        Invoke one role.

        Args:
            role: Role to run
            context: Fully populated analysis context
            inputs: Upstream reports keyed by role value (and "proposed_trade")
            timeout: Seconds before the call is abandoned

        Returns:
            The role's report, or RoleFailure with cause timeout,
            malformed_output or transport_error
        """
        timeout = timeout if timeout is not None else self._default_timeout
        messages = self._prompts.build_messages(role, context, inputs)
        log_extra = {"role": role.value, "symbol": context.symbol}

        try:
            raw = await asyncio.wait_for(self._client.invoke_model(role, messages), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{role.value} timed out after {timeout:.1f}s", extra=log_extra)
            return RoleFailure(role=role, cause=FailureCause.TIMEOUT, detail=f"no reply within {timeout:.1f}s")
        except APIError as e:
            logger.warning(f"{role.value} transport error: {e.message}", extra=log_extra)
            return RoleFailure(role=role, cause=FailureCause.TRANSPORT_ERROR, detail=e.message)
        except Exception as e:
            logger.exception(f"{role.value} client raised unexpectedly", extra=log_extra)
            return RoleFailure(
                role=role,
                cause=FailureCause.TRANSPORT_ERROR,
                detail=f"{type(e).__name__}: {e}",
            )

        if not isinstance(raw, str):
            return RoleFailure(
                role=role,
                cause=FailureCause.MALFORMED_OUTPUT,
                detail=f"expected text reply, got {type(raw).__name__}",
            )

        result = self._parser.parse(role, raw)
        if not isinstance(result, RoleFailure):
            logger.debug(
                f"{role.value}: {result.recommendation.value} ({result.confidence:.2f})",
                extra=log_extra,
            )
        return result
