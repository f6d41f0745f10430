import os
from typing import Annotated, Literal

import httpx
from fastmcp.utilities.logging import get_logger
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from pydantic import BaseModel, Field, ValidationError

from repo_explainer_mcp.utilities.settings import get_completion_timeout_seconds

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-3.5-turbo"

TRUNCATE_FAILURE_BODY_CHARACTERS = 200

FailureReason = Literal["status", "timeout", "connection", "malformed", "empty"]


class ChatCompletionMessage(BaseModel):
    content: str | None = None


class ChatCompletionChoice(BaseModel):
    message: ChatCompletionMessage


class ChatCompletionPayload(BaseModel):
    """The part of an OpenAI-compatible chat completion response that is read."""

    choices: list[ChatCompletionChoice]

    def first_content(self) -> str | None:
        if not self.choices:
            return None

        return self.choices[0].message.content


class CompletionSuccess(BaseModel):
    kind: Literal["success"] = "success"
    provider: str = Field(description="The name of the provider that produced the completion.")
    text: str = Field(description="The completion text.")


class CompletionFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    provider: str = Field(description="The name of the provider that failed.")
    reason: FailureReason = Field(description="Why the provider did not produce a completion.")
    status_code: int | None = Field(default=None, description="The HTTP status code returned by the provider, if any.")
    body: str | None = Field(default=None, description="The start of the response body or error message.")

    def describe(self) -> str:
        description = f"{self.provider}: {self.reason}"
        if self.status_code is not None:
            description += f" ({self.status_code})"
        if self.body:
            description += f" {self.body}"
        return description


CompletionResult = Annotated[CompletionSuccess | CompletionFailure, Field(discriminator="kind")]


class CompletionProvider:
    """An OpenAI-compatible chat completion endpoint.

    Requests are made once, without retries. Every failure is returned as a `CompletionFailure` so that the caller
    can move on to the next provider."""

    name: str
    model: str
    client: AsyncOpenAI

    def __init__(
        self,
        name: str,
        api_key: str,
        base_url: str,
        model: str = DEFAULT_MODEL,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.name = name
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout or get_completion_timeout_seconds(),
            max_retries=0,
            http_client=http_client,
        )

    def _failure(self, reason: FailureReason, status_code: int | None = None, body: str | None = None) -> CompletionFailure:
        failure = CompletionFailure(
            provider=self.name,
            reason=reason,
            status_code=status_code,
            body=body[:TRUNCATE_FAILURE_BODY_CHARACTERS] if body else None,
        )

        logger.warning(f"Completion provider {self.name} failed: {failure.describe()}")

        return failure

    async def complete(self, messages: list[ChatCompletionMessageParam], temperature: float, max_tokens: int) -> CompletionResult:
        """Request a chat completion and return its text, or why there is none."""

        logger.info(f"Requesting completion from {self.name} using model {self.model}")

        try:
            raw_response = await self.client.chat.completions.with_raw_response.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except APIStatusError as e:
            return self._failure(reason="status", status_code=e.status_code, body=e.response.text)
        except APITimeoutError as e:
            return self._failure(reason="timeout", body=str(e))
        except APIConnectionError as e:
            return self._failure(reason="connection", body=str(e))

        response_text: str = raw_response.http_response.text

        try:
            payload: ChatCompletionPayload = ChatCompletionPayload.model_validate_json(response_text)
        except ValidationError:
            return self._failure(reason="malformed", status_code=raw_response.status_code, body=response_text)

        content: str | None = payload.first_content()

        if content is None or not content.strip():
            return self._failure(reason="empty", status_code=raw_response.status_code, body=response_text)

        return CompletionSuccess(provider=self.name, text=content)


class ProviderSettings(BaseModel):
    name: str
    env_prefix: str
    default_base_url: str


PROVIDER_SETTINGS: list[ProviderSettings] = [
    ProviderSettings(name="routeway", env_prefix="ROUTEWAY", default_base_url="https://api.routeway.ai/v1"),
    ProviderSettings(name="openai", env_prefix="OPENAI", default_base_url="https://api.openai.com/v1"),
]


def get_completion_providers(http_client: httpx.AsyncClient | None = None) -> list[CompletionProvider]:
    """Build the providers whose API key is set, in fallback order."""

    providers: list[CompletionProvider] = []

    for provider_settings in PROVIDER_SETTINGS:
        if not (api_key := os.getenv(f"{provider_settings.env_prefix}_API_KEY")):
            continue

        providers.append(
            CompletionProvider(
                name=provider_settings.name,
                api_key=api_key,
                base_url=os.getenv(f"{provider_settings.env_prefix}_BASE_URL") or provider_settings.default_base_url,
                model=os.getenv(f"{provider_settings.env_prefix}_MODEL") or DEFAULT_MODEL,
                http_client=http_client,
            )
        )

    if not providers:
        logger.warning("No completion providers are configured, set ROUTEWAY_API_KEY or OPENAI_API_KEY to enable explanations")

    return providers
