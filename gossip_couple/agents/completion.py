"""
Completion Client

The one seam between the assistant and the generative model.

CompletionClient.complete() sends a single user message with a system
instruction and either tool declarations or search grounding, and
returns the model text plus any tool invocations, in the order the model
emitted them. Nothing else in the package imports the model SDK.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from gossip_couple.config import get_settings
from gossip_couple.config.settings import GeminiSettings

logger = structlog.get_logger(__name__)


class CompletionError(Exception):
    """The completion endpoint failed or returned nothing usable."""
    pass


class AssistantTimeoutError(CompletionError):
    """The completion call exceeded its time budget."""
    pass


class ToolInvocation(BaseModel):
    """One function call emitted by the model."""
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class CompletionResult(BaseModel):
    text: Optional[str] = None
    invocations: list[ToolInvocation] = Field(default_factory=list)
    grounding: list[dict[str, Any]] = Field(default_factory=list)


class CompletionClient(ABC):
    """Abstract interface to a generative completion endpoint."""

    @abstractmethod
    async def complete(
        self,
        message: str,
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        search_grounding: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        """
        Run one completion turn.

        Raises:
            CompletionError: on any network or model failure
        """
        pass


def _to_plain(value: Any) -> Any:
    """Convert proto map/repeated values from function-call args into plain Python."""
    if isinstance(value, (str, bytes, int, float, bool)) or value is None:
        return value
    if hasattr(value, "items"):
        return {k: _to_plain(v) for k, v in value.items()}
    if hasattr(value, "__iter__"):
        return [_to_plain(v) for v in value]
    return value


def parse_response(response: Any) -> CompletionResult:
    """Extract text, function calls and grounding sources from a model response."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return CompletionResult()

    candidate = candidates[0]
    texts: list[str] = []
    invocations: list[ToolInvocation] = []

    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        call = getattr(part, "function_call", None)
        if call is not None and getattr(call, "name", ""):
            invocations.append(ToolInvocation(name=call.name, args=_to_plain(call.args) or {}))
            continue
        text = getattr(part, "text", None)
        if text:
            texts.append(text)

    grounding = []
    metadata = getattr(candidate, "grounding_metadata", None)
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is not None:
            grounding.append({"uri": getattr(web, "uri", ""), "title": getattr(web, "title", "")})

    return CompletionResult(
        text="".join(texts).strip() or None,
        invocations=invocations,
        grounding=grounding,
    )


class GeminiCompletionClient(CompletionClient):
    """
    Gemini implementation of the completion seam.

    A GenerativeModel is built per call because the system instruction
    carries the per-turn context block.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)

    def _build_model(
        self,
        system_instruction: str,
        tools: Optional[list[dict]],
        search_grounding: bool,
        temperature: Optional[float],
    ) -> genai.GenerativeModel:
        model_tools: Any = None
        if tools:
            model_tools = [{"function_declarations": tools}]
        elif search_grounding:
            model_tools = "google_search_retrieval"

        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system_instruction,
            tools=model_tools,
            generation_config={
                "temperature": (
                    temperature if temperature is not None else self._settings.agent_temperature
                ),
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    async def complete(
        self,
        message: str,
        system_instruction: str,
        tools: Optional[list[dict]] = None,
        search_grounding: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        model = self._build_model(system_instruction, tools, search_grounding, temperature)
        timeout = self._settings.request_timeout_seconds
        try:
            response = await asyncio.wait_for(
                model.generate_content_async(
                    message,
                    request_options={"timeout": timeout},
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise AssistantTimeoutError(f"Completion timed out after {timeout}s")
        except Exception as e:
            logger.error("completion_failed", error=str(e), model=self._settings.model_name)
            raise CompletionError(f"Completion failed: {e}")

        return parse_response(response)
