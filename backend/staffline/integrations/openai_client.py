"""OpenAI integration with fallback, timeout handling and tool calling."""

import asyncio
import logging
from typing import Optional, List, Dict, Any
from openai import AsyncOpenAI, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential

from staffline.schemas.agent import AgentResponse, ToolCall
from staffline.exceptions import ExternalServiceError
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class OpenAIClient:
    """
    Client for OpenAI API with:
    - Timeout handling
    - Fallback to cheaper model
    - Retry logic
    Provider failures surface as ExternalServiceError.
    """

    def __init__(self):
        self.client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY) if settings.OPENAI_API_KEY else None
        self.primary_model = settings.OPENAI_MODEL_PRIMARY
        self.fallback_model = settings.OPENAI_MODEL_FALLBACK
        self.timeout = settings.LLM_TIMEOUT_SECONDS

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        use_fallback_on_timeout: bool = True,
    ) -> str:
        """
        Get a chat completion with timeout handling.
        Falls back to cheaper model if primary times out.
        """
        if not self.client:
            # Dev mode
            return "[DEV MODE] LLM response placeholder"

        model = model or self.primary_model

        try:
            return await asyncio.wait_for(
                self._call_api(messages, model, temperature, max_tokens),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            if use_fallback_on_timeout and model != self.fallback_model:
                logger.warning("LLM %s timed out, retrying with %s", model, self.fallback_model)
                try:
                    return await asyncio.wait_for(
                        self._call_api(messages, self.fallback_model, temperature, max_tokens),
                        timeout=self.timeout * 2
                    )
                except asyncio.TimeoutError:
                    raise ExternalServiceError("LLM request timed out on both primary and fallback models")
                except OpenAIError as e:
                    raise ExternalServiceError(f"LLM request failed: {e}")
            raise ExternalServiceError("LLM request timed out")
        except OpenAIError as e:
            raise ExternalServiceError(f"LLM request failed: {e}")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _call_api(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Make the actual API call with retry."""
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    async def complete_with_tools(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: Optional[str] = None,
        temperature: float = 0.4,
    ) -> AgentResponse:
        """
        Get a completion that may request tool calls.
        Used by the booking agent to decide which tools to call.
        """
        if not self.client:
            return AgentResponse(type="text", content="[DEV MODE] Tool call placeholder")

        model = model or self.primary_model

        try:
            message = await asyncio.wait_for(
                self._call_tools_api(messages, tools, model, temperature),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise ExternalServiceError("LLM tool call request timed out")
        except OpenAIError as e:
            raise ExternalServiceError(f"LLM tool call request failed: {e}")

        if message.tool_calls:
            return AgentResponse(
                type="tool_calls",
                content=message.content,
                tool_calls=[
                    ToolCall(
                        id=call.id,
                        name=call.function.name,
                        arguments=call.function.arguments or "{}",
                    )
                    for call in message.tool_calls
                ],
            )
        return AgentResponse(type="text", content=message.content or "")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _call_tools_api(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: str,
        temperature: float,
    ):
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            temperature=temperature,
        )
        return response.choices[0].message
