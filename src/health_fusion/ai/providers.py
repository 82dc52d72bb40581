"""AI provider clients built on the official SDKs."""

import asyncio
import time
from collections.abc import Callable
from typing import Any, Protocol

import anthropic
import openai
import structlog

from ..config import AISettings, AnthropicSettings, OpenAISettings
from ..metrics import AI_LATENCY, MetricName, MetricsSink
from .errors import InvalidResponseError, ProviderRequestError
from .secure_store import ANTHROPIC, OPENAI, EndpointNotFoundError, SecureStore, SecureStoreError

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an AI health analyst specializing in the relationship between "
    "personal health metrics and environmental conditions. Analyze the data "
    "you are given, identify meaningful patterns, and answer only with the "
    "JSON structure requested. Do not give medical diagnoses."
)


class AIProvider(Protocol):
    """Anything that turns a prompt into free text."""

    name: str

    async def analyze(self, prompt: str) -> str: ...


class _SDKProvider:
    """Shared request plumbing: credentials, worker thread, timeout, metrics.

    Subclasses implement ``_create_client``, ``_send`` and ``_extract_text``
    and translate their SDK's exceptions in ``_translate``.
    """

    name = "provider"

    def __init__(
        self,
        settings: OpenAISettings | AnthropicSettings,
        ai_settings: AISettings,
        secure_store: SecureStore | None,
        metrics: MetricsSink | None = None,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._settings = settings
        self._ai_settings = ai_settings
        self._secure_store = secure_store
        self._metrics = metrics
        self._client_factory = client_factory

    @property
    def model(self) -> str:
        if self._settings.model:
            return self._settings.model
        if self._secure_store is None:
            raise ProviderRequestError(self.name, "no credential store", retryable=False)
        return self._secure_store.get_model(self.name)

    def _credentials(self) -> tuple[str, str | None]:
        if self._secure_store is None:
            raise ProviderRequestError(self.name, "no credential store", retryable=False)
        try:
            api_key = self._secure_store.get_api_key(self.name)
        except SecureStoreError as e:
            raise ProviderRequestError(self.name, str(e), retryable=False) from e

        base_url = self._settings.base_url
        if base_url is None:
            try:
                base_url = self._secure_store.get_endpoint(self.name)
            except EndpointNotFoundError:
                base_url = None
        return api_key, base_url

    async def analyze(self, prompt: str) -> str:
        """Send one prompt and return the response text.

        Raises:
            ProviderRequestError: Missing credentials, timeout, transport or API error.
            InvalidResponseError: The response carried no text.
        """
        api_key, base_url = self._credentials()
        model = self.model
        timeout = self._ai_settings.timeout_seconds
        start = time.perf_counter()

        def do_request() -> Any:
            client = self._create_client(api_key=api_key, base_url=base_url, timeout=timeout)
            return self._send(client, model, prompt)

        try:
            message = await asyncio.wait_for(asyncio.to_thread(do_request), timeout=timeout)
        except TimeoutError as e:
            self._record(start, success=False)
            raise ProviderRequestError(self.name, f"timed out after {timeout}s") from e
        except Exception as e:
            self._record(start, success=False)
            raise self._translate(e) from e

        self._record(start, success=True)
        text = self._extract_text(message)
        if not text:
            raise InvalidResponseError(f"{self.name}: empty response")
        logger.debug("ai_provider_response", provider=self.name, model=model, chars=len(text))
        return text

    def _record(self, start: float, success: bool) -> None:
        duration = time.perf_counter() - start
        AI_LATENCY.labels(provider=self.name).observe(duration)
        if self._metrics is None:
            return
        self._metrics.record_network_latency(duration, f"{self.name}_analysis")
        if not success:
            self._metrics.record(
                MetricName.HEALTH_DATA_ERROR,
                1,
                metadata={"error": f"{self.name}_request_failed"},
            )

    def _create_client(self, **kwargs: Any) -> Any:
        raise NotImplementedError

    def _send(self, client: Any, model: str, prompt: str) -> Any:
        raise NotImplementedError

    def _extract_text(self, message: Any) -> str:
        raise NotImplementedError

    def _translate(self, error: Exception) -> ProviderRequestError:
        return ProviderRequestError(self.name, f"{type(error).__name__}: {error}")


class OpenAIProvider(_SDKProvider):
    """OpenAI chat completions with a system and a user message."""

    name = OPENAI

    def _create_client(self, **kwargs: Any) -> Any:
        factory = self._client_factory or openai.OpenAI
        return factory(**kwargs)

    def _send(self, client: Any, model: str, prompt: str) -> Any:
        return client.chat.completions.create(
            model=model,
            max_tokens=self._ai_settings.max_tokens,
            temperature=self._ai_settings.temperature,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )

    def _extract_text(self, message: Any) -> str:
        if not message.choices:
            return ""
        return (message.choices[0].message.content or "").strip()

    def _translate(self, error: Exception) -> ProviderRequestError:
        if isinstance(error, openai.APITimeoutError):
            return ProviderRequestError(self.name, "request timed out")
        if isinstance(error, openai.APIConnectionError):
            return ProviderRequestError(self.name, f"connection error: {error}")
        if isinstance(error, openai.RateLimitError):
            return ProviderRequestError(self.name, "rate limited", status_code=429)
        if isinstance(error, openai.APIStatusError):
            return ProviderRequestError(
                self.name,
                f"API error: {error}",
                status_code=error.status_code,
                retryable=error.status_code >= 500,
            )
        return super()._translate(error)


class AnthropicProvider(_SDKProvider):
    """Claude messages API."""

    name = ANTHROPIC

    def _create_client(self, **kwargs: Any) -> Any:
        factory = self._client_factory or anthropic.Anthropic
        return factory(**kwargs)

    def _send(self, client: Any, model: str, prompt: str) -> Any:
        return client.messages.create(
            model=model,
            max_tokens=self._ai_settings.max_tokens,
            temperature=self._ai_settings.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

    def _extract_text(self, message: Any) -> str:
        parts = [getattr(block, "text", "") for block in message.content or []]
        return "".join(parts).strip()

    def _translate(self, error: Exception) -> ProviderRequestError:
        if isinstance(error, anthropic.APITimeoutError):
            return ProviderRequestError(self.name, "request timed out")
        if isinstance(error, anthropic.APIConnectionError):
            return ProviderRequestError(self.name, f"connection error: {error}")
        if isinstance(error, anthropic.RateLimitError):
            return ProviderRequestError(self.name, "rate limited", status_code=429)
        if isinstance(error, anthropic.APIStatusError):
            return ProviderRequestError(
                self.name,
                f"API error: {error}",
                status_code=error.status_code,
                retryable=error.status_code >= 500,
            )
        return super()._translate(error)
