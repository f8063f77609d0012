"""
Chat relay for OpenAI-compatible chat completion providers (Groq, Lovable AI Gateway).

Forwards the caller's message list, prepending the procurement assistant
system prompt when the conversation does not carry one, and returns either
the full completion or a stream of content deltas.
"""

import asyncio
import codecs
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from ..core.config import config
from ..utils.logger import get_logger
from ..utils.metrics import record_chat_request

VALID_ROLES = ("system", "user", "assistant")

DEFAULT_SYSTEM_PROMPT = """Você é um assistente especializado em licitações públicas no Brasil. Seu papel é ajudar usuários com dúvidas sobre:

- Processos licitatórios (editais, atas, contratos)
- Legislação de licitações (Lei 8.666/93, Lei 14.133/21)
- Portal Nacional de Contratações Públicas (PNCP)
- Modalidades de licitação
- Documentação necessária
- Prazos e procedimentos

Responda de forma clara, objetiva e sempre baseada na legislação brasileira atual."""

PROVIDER_ERROR_MESSAGES = {
    400: "Requisição inválida para a API de IA. Verifique os parâmetros.",
    401: "Chave API inválida. Verifique a configuração.",
    402: "Créditos insuficientes no provedor de IA.",
    429: "Limite de requisições excedido. Tente novamente em alguns instantes.",
}


class ChatError(Exception):
    """Base chat relay error"""
    status_code: int = 500


class ChatRequestError(ChatError):
    """The caller sent an invalid message list"""
    status_code = 400


class ChatConfigurationError(ChatError):
    """The provider is not configured (missing API key)"""
    status_code = 503

    def __init__(self, message: str, provider: str):
        super().__init__(message)
        self.provider = provider


class ChatProviderError(ChatError):
    """The upstream provider rejected or failed the request"""

    def __init__(self, message: str, status_code: int, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


@dataclass
class ChatProvider:
    """OpenAI-compatible chat completions endpoint"""
    name: str
    base_url: str
    api_key: Optional[str]
    default_model: str
    api_key_env: str = ""

    @classmethod
    def from_config(cls, name: Optional[str] = None) -> 'ChatProvider':
        settings = config.get_provider_settings(name)
        return cls(
            name=settings["name"],
            base_url=settings["base_url"],
            api_key=settings["api_key"],
            default_model=settings["model"],
            api_key_env=settings["api_key_env"],
        )

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"


@dataclass
class ChatCompletion:
    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "usage": self.usage,
        }


def validate_messages(messages: Any) -> List[Dict[str, Any]]:
    """Check the message list shape without altering it"""
    if not isinstance(messages, list) or not messages:
        raise ChatRequestError("Messages array is required")
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            raise ChatRequestError(f"Message {index} must be an object")
        if message.get("role") not in VALID_ROLES:
            raise ChatRequestError(f"Message {index} has invalid role: {message.get('role')!r}")
        if not isinstance(message.get("content"), str):
            raise ChatRequestError(f"Message {index} content must be a string")
    return messages


def build_system_prompt(system_prompt: Optional[str] = None, context: Optional[str] = None) -> str:
    prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
    if context:
        prompt = f"{prompt}\n\nContexto adicional do documento: {context}"
    return prompt


def prepare_messages(messages: Any, system_prompt: Optional[str] = None,
                     context: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Prepend the system prompt when the conversation has none.

    Args:
        messages: Chat messages as sent by the caller
        system_prompt: Prompt to use instead of the default assistant prompt
        context: Extra document context appended to the system prompt

    Returns:
        The caller's messages, unchanged, preceded by a system message if absent
    """
    validate_messages(messages)
    if any(message["role"] == "system" for message in messages):
        return list(messages)
    return [{"role": "system", "content": build_system_prompt(system_prompt, context)}] + list(messages)


class ChatRelay:
    """Relays chat conversations to an OpenAI-compatible provider"""

    def __init__(self, provider: ChatProvider = None):
        self.provider = provider or ChatProvider.from_config()
        self.logger = get_logger("chat_relay")
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    def build_request(self, messages: List[Dict[str, Any]], model: Optional[str] = None,
                      temperature: Optional[float] = None, max_tokens: Optional[int] = None,
                      stream: bool = False, system_prompt: Optional[str] = None,
                      context: Optional[str] = None) -> Dict[str, Any]:
        """Build the chat completions payload"""
        return {
            "model": model or self.provider.default_model,
            "messages": prepare_messages(messages, system_prompt, context),
            "temperature": config.llm.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or config.llm.max_tokens,
            "stream": stream,
        }

    async def complete(self, messages: List[Dict[str, Any]], model: Optional[str] = None,
                       temperature: Optional[float] = None, max_tokens: Optional[int] = None,
                       system_prompt: Optional[str] = None, context: Optional[str] = None) -> ChatCompletion:
        """Send the conversation and return the full completion"""

        payload = self.build_request(messages, model, temperature, max_tokens, False, system_prompt, context)
        self.logger.info(f"Sending chat request to {self.provider.name}",
                         extra={"model": payload["model"], "message_count": len(payload["messages"])})

        data = await self._post(payload)

        choices = data.get("choices") or []
        if not choices:
            record_chat_request(self.provider.name, "empty")
            raise ChatProviderError("Resposta vazia da IA. Tente reformular sua pergunta.", 502)

        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            record_chat_request(self.provider.name, "empty")
            raise ChatProviderError("Conteúdo vazio na resposta da IA.", 502)

        usage = data.get("usage") or {}
        record_chat_request(self.provider.name, "success")
        return ChatCompletion(
            content=content,
            model=data.get("model") or payload["model"],
            finish_reason=choices[0].get("finish_reason"),
            usage={
                "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
                "total_tokens": int(usage.get("total_tokens", 0) or 0),
            },
        )

    async def stream(self, messages: List[Dict[str, Any]], model: Optional[str] = None,
                     temperature: Optional[float] = None, max_tokens: Optional[int] = None,
                     system_prompt: Optional[str] = None, context: Optional[str] = None) -> AsyncIterator[str]:
        """Send the conversation and yield content deltas as they arrive"""

        payload = self.build_request(messages, model, temperature, max_tokens, True, system_prompt, context)
        self.logger.info(f"Streaming chat request to {self.provider.name}",
                         extra={"model": payload["model"], "message_count": len(payload["messages"])})

        self._check_api_key()
        await self._ensure_session()

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            async with self._session.post(self.provider.completions_url, json=payload,
                                          headers=self._headers()) as response:
                if response.status != 200:
                    await self._raise_for_status(response.status, await response.text())

                buffer = ""
                async for chunk in response.content.iter_any():
                    # Multi-byte characters may straddle chunk boundaries
                    buffer += decoder.decode(chunk)
                    while "\n" in buffer:
                        line, buffer = buffer.split("\n", 1)
                        delta = parse_sse_line(line)
                        if delta is None:
                            continue
                        if delta is STREAM_DONE:
                            record_chat_request(self.provider.name, "success")
                            return
                        yield delta

                buffer += decoder.decode(b"", final=True)
                if buffer.strip():
                    delta = parse_sse_line(buffer)
                    if isinstance(delta, str):
                        yield delta
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            record_chat_request(self.provider.name, "error")
            self.logger.error(f"Chat stream from {self.provider.name} failed: {e!r}")
            raise ChatProviderError(f"Falha ao contatar o provedor de IA: {e}", 502)

        record_chat_request(self.provider.name, "success")

    # Private methods

    def _check_api_key(self):
        if not self.provider.api_key:
            record_chat_request(self.provider.name, "unconfigured")
            raise ChatConfigurationError(
                f"{self.provider.api_key_env or 'API key'} não configurada. Configure a chave API do provedor.",
                provider=self.provider.name,
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.provider.api_key}",
            "Content-Type": "application/json",
        }

    async def _ensure_session(self):
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=config.llm.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._check_api_key()
        await self._ensure_session()

        try:
            async with self._session.post(self.provider.completions_url, json=payload,
                                          headers=self._headers()) as response:
                text = await response.text()
                if response.status != 200:
                    await self._raise_for_status(response.status, text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            record_chat_request(self.provider.name, "error")
            self.logger.error(f"Chat provider {self.provider.name} unreachable: {e}")
            raise ChatProviderError(f"Falha ao contatar o provedor de IA: {e}", 502)

        try:
            return json.loads(text)
        except ValueError:
            record_chat_request(self.provider.name, "error")
            raise ChatProviderError("Resposta inválida do provedor de IA.", 502, details=text[:500])

    async def _raise_for_status(self, status: int, text: str):
        record_chat_request(self.provider.name, "error")
        self.logger.error(f"Chat provider {self.provider.name} error {status}: {text[:500]}")
        if status in PROVIDER_ERROR_MESSAGES:
            message = PROVIDER_ERROR_MESSAGES[status]
        elif status >= 500:
            message = "Erro interno do provedor de IA. Tente novamente."
        else:
            message = f"Erro do provedor de IA: {status}"
        raise ChatProviderError(message, status, details=text[:500])


STREAM_DONE = object()


def parse_sse_line(line: str) -> Any:
    """
    Parse one server-sent-events line from a streaming completion.

    Returns the content delta, STREAM_DONE for the terminator, or None for
    lines that carry no content.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return STREAM_DONE
    try:
        event = json.loads(data)
    except ValueError:
        return None
    if not isinstance(event, dict):
        return None
    choices = event.get("choices") or []
    if not choices:
        return None
    content = (choices[0].get("delta") or {}).get("content")
    return content or None
