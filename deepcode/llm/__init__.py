"""OpenAI-compatible chat completions provider - direct HTTP calls via httpx."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from deepcode.config import ModelConfig
from deepcode.exceptions import LLMAPIError, LLMError
from deepcode.logging import get_logger

log = get_logger(__name__)


@dataclass
class LLMResponse:
    """Assistant message returned by the model."""

    content: str = ""
    reasoning_content: str | None = None
    refusal: str | None = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    model: str = ""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Submit a message list and tool schema, return the assistant message."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None


def parse_chat_completion(data: dict[str, Any], model: str = "") -> LLMResponse:
    """Extract the first choice of a chat completion payload."""
    choices = data.get("choices") or []
    message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        message = {}

    raw_tool_calls = message.get("tool_calls")
    tool_calls = [
        call for call in raw_tool_calls if isinstance(call, dict)
    ] if isinstance(raw_tool_calls, list) else []

    usage = data.get("usage")
    return LLMResponse(
        content=message.get("content") or "",
        reasoning_content=message.get("reasoning_content") or None,
        refusal=message.get("refusal") or None,
        tool_calls=tool_calls,
        usage=usage if isinstance(usage, dict) else None,
        model=str(data.get("model") or model),
    )


class OpenAIProvider(LLMProvider):
    """Chat completions client for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        temperature: float | None = None,
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize provider.

        Args:
            model: Model name sent with every request
            api_key: Bearer token
            base_url: API base URL (``/chat/completions`` is appended)
            temperature: Optional sampling temperature
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        url = f"{self.base_url}/chat/completions"

        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
        }
        if tools:
            body["tools"] = tools
        if self.temperature is not None:
            body["temperature"] = self.temperature

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            log.debug("Calling model", model=self.model, url=url, msg_count=len(messages))
            response = await self.client.post(url, json=body, headers=headers)
            log.debug("Model response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            return parse_chat_completion(response.json(), model=self.model)
        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Response decode error: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(config: ModelConfig) -> LLMProvider | None:
    """Create a provider from model config, or None when no API key is configured."""
    api_key = (config.api_key or "").strip()
    if not api_key:
        return None
    return OpenAIProvider(
        model=config.model,
        api_key=api_key,
        base_url=config.base_url,
        temperature=config.temperature,
        timeout=config.timeout,
    )
