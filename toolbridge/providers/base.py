"""
ToolBridge Provider Base - chat-completion adapters with native tool calling.

A provider takes the full conversation plus tool declarations and returns
one assistant ``ChatMessage``, optionally carrying tool-call requests. It
knows the wire format of one model API and nothing about tool execution.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Type

import httpx

from toolbridge.mcp.schema import ChatMessage, Role, ToolCallRequest, ToolDescriptor

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class ProviderError(Exception):
    """Raised when the model API call fails or returns something unusable."""


def tool_declarations(tools: Sequence[ToolDescriptor]) -> List[Dict[str, Any]]:
    """Map tool descriptors onto the function-calling declaration shape."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def _decode_arguments(raw: Any, tool_name: Optional[str]) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Undecodable arguments for tool %s: %r", tool_name, raw[:200])
            return {}
        if isinstance(decoded, dict):
            return decoded
    logger.warning("Ignoring non-object arguments for tool %s: %r", tool_name, raw)
    return {}


def parse_tool_calls(raw_calls: Any) -> List[ToolCallRequest]:
    """
    Parse ``tool_calls`` from either API flavour.

    A missing or malformed name stays ``None`` so the call is answered with
    an error message. Calls the API left without an id get ``call_<index>``,
    which the assistant message and the matching tool message both carry.
    """
    if not isinstance(raw_calls, list):
        if raw_calls:
            logger.warning("Ignoring non-list tool_calls: %r", raw_calls)
        return []

    calls: List[ToolCallRequest] = []
    for index, raw in enumerate(raw_calls):
        if not isinstance(raw, dict):
            raw = {}
        function = raw.get("function")
        if not isinstance(function, dict):
            function = {}
        name = function.get("name")
        if not isinstance(name, str) or not name:
            name = None
        call_id = raw.get("id")
        calls.append(
            ToolCallRequest(
                name=name,
                arguments=_decode_arguments(function.get("arguments"), name),
                id=str(call_id) if call_id else f"call_{index}",
            )
        )
    return calls


class Provider(ABC):
    """
    Abstract base class for chat providers.

    Example:
        >>> class EchoProvider(Provider):
        ...     provider_name = "echo"
        ...     def chat(self, messages, tools=()):
        ...         return ChatMessage.assistant(messages[-1].content)
    """

    def __init__(
        self,
        model: str,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        think: bool = False,
        timeout: float = 120,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the provider.

        Args:
            model: The model identifier sent to the API.
            base_url: API base URL.
            api_key: Bearer token, if the API needs one.
            think: Whether to request model reasoning output.
            timeout: HTTP timeout in seconds for one completion.
            client: Preconfigured ``httpx.Client`` (tests inject a mock transport).
        """
        self.model = model
        self.base_url = (base_url or self.default_base_url()).rstrip("/")
        self.api_key = api_key
        self.think = think
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""

    def default_base_url(self) -> str:
        return DEFAULT_OLLAMA_URL

    @abstractmethod
    def chat(self, messages: Sequence[ChatMessage], tools: Sequence[ToolDescriptor] = ()) -> ChatMessage:
        """
        Submit the conversation and return the assistant's reply.

        Raises:
            ProviderError: On HTTP failure or a malformed response.
        """

    def close(self) -> None:
        self._client.close()

    def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{self.provider_name} returned HTTP {exc.response.status_code}: {exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_name} request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"{self.provider_name} returned invalid JSON: {exc}") from exc


class OllamaProvider(Provider):
    """Ollama native ``/api/chat`` provider."""

    @property
    def provider_name(self) -> str:
        return "ollama"

    @staticmethod
    def _encode_message(message: ChatMessage) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {"role": message.role.value, "content": message.content}
        if message.tool_calls:
            encoded["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}}
                for call in message.tool_calls
            ]
        if message.role is Role.TOOL and message.tool_name:
            encoded["tool_name"] = message.tool_name
        return encoded

    def chat(self, messages: Sequence[ChatMessage], tools: Sequence[ToolDescriptor] = ()) -> ChatMessage:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [self._encode_message(m) for m in messages],
            "stream": False,
            "think": self.think,
        }
        if tools:
            payload["tools"] = tool_declarations(tools)

        data = self._post(f"{self.base_url}/api/chat", payload)
        message = data.get("message")
        if not isinstance(message, dict):
            raise ProviderError(f"ollama response has no message: {str(data)[:300]}")

        return ChatMessage.assistant(
            message.get("content") or "",
            tool_calls=parse_tool_calls(message.get("tool_calls")),
        )


class OpenAICompatibleProvider(Provider):
    """Any API exposing OpenAI-style ``/chat/completions`` with function calling."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def default_base_url(self) -> str:
        return "https://api.openai.com/v1"

    @staticmethod
    def _encode_message(message: ChatMessage) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {"role": message.role.value, "content": message.content}
        if message.tool_calls:
            encoded["tool_calls"] = [
                {
                    "id": call.id or f"call_{index}",
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for index, call in enumerate(message.tool_calls)
            ]
        if message.role is Role.TOOL:
            encoded["tool_call_id"] = message.tool_call_id or ""
        return encoded

    def chat(self, messages: Sequence[ChatMessage], tools: Sequence[ToolDescriptor] = ()) -> ChatMessage:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [self._encode_message(m) for m in messages],
        }
        if tools:
            payload["tools"] = tool_declarations(tools)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        data = self._post(f"{self.base_url}/chat/completions", payload, headers=headers)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.provider_name} response has no message: {str(data)[:300]}") from exc

        return ChatMessage.assistant(
            message.get("content") or "",
            tool_calls=parse_tool_calls(message.get("tool_calls")),
        )


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "ollama": OllamaProvider,
        "openai": OpenAICompatibleProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: Type[Provider]) -> None:
        """Register a new provider."""
        cls._providers[name] = provider_class

    @classmethod
    def create(cls, provider_name: str, model: str, **kwargs: Any) -> Provider:
        """
        Create a provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        if provider_name not in cls._providers:
            raise ValueError(f"Unknown provider: {provider_name}")
        return cls._providers[provider_name](model=model, **kwargs)

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
