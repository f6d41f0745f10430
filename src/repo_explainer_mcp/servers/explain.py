import asyncio
import math
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from logging import Logger
from typing import Any, Self

from fastmcp.server import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool_transform import ArgTransform, TransformedTool
from fastmcp.utilities.logging import get_logger
from openai.types.chat import ChatCompletionMessageParam
from pydantic import BaseModel, Field

from repo_explainer_mcp.clients.completions import CompletionFailure, CompletionProvider, CompletionSuccess
from repo_explainer_mcp.clients.models.github import RepositoryFileWithContent
from repo_explainer_mcp.parsing.models import CodeFunction
from repo_explainer_mcp.servers.prompts.explain import (
    EXPLAIN_FUNCTION_SYSTEM_PROMPT,
    EXPLAIN_USAGE_SYSTEM_PROMPT,
    explain_function_prompt,
    explain_usage_prompt,
)
from repo_explainer_mcp.servers.repository import RepositoryServer, hidden_token
from repo_explainer_mcp.servers.shared.annotations import (
    CODE,
    CODE_SNIPPETS,
    CONTEXT,
    FUNCTION_NAME,
    OWNER,
    OWNER_ARG_TRANSFORM,
    PATH,
    PATH_ARG_TRANSFORM,
    REPO,
    REPO_ARG_TRANSFORM,
    USAGE_CONTEXT,
)
from repo_explainer_mcp.servers.shared.errors import ClientRequestError, ConfigError, RateLimitError, UpstreamError
from repo_explainer_mcp.utilities.cache import ONE_DAY_IN_SECONDS, CacheManager, Clock, make_key
from repo_explainer_mcp.utilities.rate_limit import RateLimiter

FUNCTION_EXPLANATION_PREFIX = "function_explanation"
FUNCTION_USAGE_PREFIX = "function_usage"

EXPLANATION_TTL = ONE_DAY_IN_SECONDS

FUNCTION_TEMPERATURE = 0.7
FUNCTION_MAX_TOKENS = 300
USAGE_TEMPERATURE = 0.7
USAGE_MAX_TOKENS = 500

MCP_RATE_LIMIT_IDENTIFIER = "mcp"

logger = get_logger(__name__)


class FunctionExplanation(BaseModel):
    function_name: str = Field(description="The name of the explained function.")
    how: str = Field(description="What the function does and how.")
    timestamp: int = Field(description="When the explanation was generated, in milliseconds since the epoch.")


class FunctionExplanationResult(FunctionExplanation):
    cached: bool = Field(description="Whether the explanation was served from the cache.")

    @classmethod
    def from_explanation(cls, explanation: FunctionExplanation, cached: bool) -> Self:
        return cls(**explanation.model_dump(), cached=cached)

    def to_http_payload(self) -> dict[str, object]:
        return {"functionName": self.function_name, "how": self.how, "timestamp": self.timestamp, "cached": self.cached}


class FunctionUsageExplanation(BaseModel):
    function_name: str = Field(description="The name of the explained function.")
    where: str = Field(description="Where and why the function is used.")
    timestamp: int = Field(description="When the explanation was generated, in milliseconds since the epoch.")


class FunctionUsageExplanationResult(FunctionUsageExplanation):
    cached: bool = Field(description="Whether the explanation was served from the cache.")

    @classmethod
    def from_explanation(cls, explanation: FunctionUsageExplanation, cached: bool) -> Self:
        return cls(**explanation.model_dump(), cached=cached)

    def to_http_payload(self) -> dict[str, object]:
        return {"functionName": self.function_name, "where": self.where, "timestamp": self.timestamp, "cached": self.cached}


async def complete_with_fallback(
    providers: Sequence[CompletionProvider],
    messages: list[ChatCompletionMessageParam],
    temperature: float,
    max_tokens: int,
) -> CompletionSuccess:
    """Try each provider in order and return the first successful completion.

    Raises:
        ConfigError: If no providers are configured. No request is made.
        UpstreamError: If every provider fails.
    """

    if not providers:
        raise ConfigError(message="No completion providers are configured", extra_info={"required": "ROUTEWAY_API_KEY or OPENAI_API_KEY"})

    failures: list[CompletionFailure] = []

    for provider in providers:
        result: CompletionSuccess | CompletionFailure = await provider.complete(
            messages=messages, temperature=temperature, max_tokens=max_tokens
        )

        if isinstance(result, CompletionSuccess):
            if failures:
                logger.info(f"Completion provider {provider.name} succeeded after {len(failures)} failed provider(s)")
            return result

        failures.append(result)

    raise UpstreamError(
        message="All completion providers failed",
        extra_info={"failures": "; ".join(failure.describe() for failure in failures)},
    )


def placeholder_source(function: CodeFunction) -> str:
    return f"function {function.name}({', '.join(function.params)}) {{ /* implementation */ }}"


class ExplainServer:
    """Explains functions with the first completion provider that answers, caching each explanation for a day."""

    providers: list[CompletionProvider]
    cache: CacheManager
    rate_limiter: RateLimiter
    repository_server: RepositoryServer
    logger: Logger
    cache_locks: defaultdict[str, asyncio.Lock]

    def __init__(
        self,
        providers: Sequence[CompletionProvider],
        cache: CacheManager | None = None,
        rate_limiter: RateLimiter | None = None,
        repository_server: RepositoryServer | None = None,
        logger: Logger | None = None,
        clock: Clock | None = None,
    ):
        self.logger = logger or get_logger(name=__name__)
        self.providers = list(providers)
        self.cache = cache or CacheManager(default_ttl=EXPLANATION_TTL)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.repository_server = repository_server or RepositoryServer()
        self._clock: Clock = clock or time.time
        self.cache_locks = defaultdict(asyncio.Lock)

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        rate_limit_args = {
            "identifier": ArgTransform(hide=True, default=MCP_RATE_LIMIT_IDENTIFIER),
        }

        tools: list[TransformedTool] = [
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.explain_function),
                description="Explain what a function does in 2-3 sentences. Explanations are cached for a day.",
                transform_args=rate_limit_args,
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.explain_usage),
                name="explain_function_usage",
                description="Explain where and why a function is used. Explanations are cached for a day.",
                transform_args=rate_limit_args,
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.explain_repository_function),
                description="Find a function in a repository file and explain what it does.",
                transform_args={
                    "owner": OWNER_ARG_TRANSFORM,
                    "repo": REPO_ARG_TRANSFORM,
                    "path": PATH_ARG_TRANSFORM,
                    "token": hidden_token(),
                    **rate_limit_args,
                },
            ),
        ]

        for tool in tools:
            _ = fastmcp.add_tool(tool=tool)

        return fastmcp

    def require_rate_limit(self, identifier: str) -> None:
        """Count a request against the identifier and raise a RateLimitError if it is over the limit."""

        if self.rate_limiter.is_allowed(identifier=identifier):
            return

        retry_after: int = max(1, math.ceil(self.rate_limiter.seconds_until_reset(identifier=identifier)))

        raise RateLimitError(identifier=identifier, retry_after=retry_after)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _get_or_create[T: BaseModel](self, key: str, create: Callable[[], Awaitable[T]]) -> tuple[T, bool]:
        """Return the cached value for the key and True, or create, cache and return it with False.

        Concurrent calls for the same key wait for the first one instead of creating the value again."""

        if (cached_value := self.cache.get(key)) is not None:
            self.logger.info(f"Cache hit for {key[:80]}")
            return cached_value, True  # pyright: ignore[reportReturnType]

        lock: asyncio.Lock = self.cache_locks[key]

        try:
            async with lock:
                if (cached_value := self.cache.get(key)) is not None:
                    self.logger.info(f"Cache hit for {key[:80]} after waiting")
                    return cached_value, True  # pyright: ignore[reportReturnType]

                self.logger.info(f"Cache miss for {key[:80]}")

                value: T = await create()

                self.cache.set(key, value, ttl=EXPLANATION_TTL)

                return value, False
        finally:
            if not lock.locked():
                _ = self.cache_locks.pop(key, None)

    async def explain_function(
        self, function_name: FUNCTION_NAME, code: CODE, context: CONTEXT = None, identifier: str | None = None
    ) -> FunctionExplanationResult:
        """Explain what a function does.

        Args:
            function_name: The name of the function.
            code: The source code of the function.
            context: Where the function lives or anything else that helps explain it.
            identifier: The caller to count the request against. Requests without one are not rate limited.
        """

        if identifier is not None:
            self.require_rate_limit(identifier=identifier)

        if not function_name or not code:
            raise ClientRequestError(message="Function name and code are required")

        async def create() -> FunctionExplanation:
            completion: CompletionSuccess = await complete_with_fallback(
                providers=self.providers,
                messages=[
                    {"role": "system", "content": EXPLAIN_FUNCTION_SYSTEM_PROMPT},
                    {"role": "user", "content": explain_function_prompt(function_name=function_name, code=code, context=context)},
                ],
                temperature=FUNCTION_TEMPERATURE,
                max_tokens=FUNCTION_MAX_TOKENS,
            )

            return FunctionExplanation(function_name=function_name, how=completion.text, timestamp=self._now_ms())

        explanation, cached = await self._get_or_create(key=make_key(FUNCTION_EXPLANATION_PREFIX, function_name, code), create=create)

        return FunctionExplanationResult.from_explanation(explanation=explanation, cached=cached)

    async def explain_usage(
        self,
        function_name: FUNCTION_NAME,
        usage_context: USAGE_CONTEXT,
        code_snippets: CODE_SNIPPETS = None,
        identifier: str | None = None,
    ) -> FunctionUsageExplanationResult:
        """Explain where and why a function is used.

        Args:
            function_name: The name of the function.
            usage_context: A description of where the function is used.
            code_snippets: Code snippets showing the function being called.
            identifier: The caller to count the request against. Requests without one are not rate limited.
        """

        if identifier is not None:
            self.require_rate_limit(identifier=identifier)

        if not function_name or not usage_context:
            raise ClientRequestError(message="Function name and usage context are required")

        async def create() -> FunctionUsageExplanation:
            completion: CompletionSuccess = await complete_with_fallback(
                providers=self.providers,
                messages=[
                    {"role": "system", "content": EXPLAIN_USAGE_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": explain_usage_prompt(function_name=function_name, usage_context=usage_context, code_snippets=code_snippets),
                    },
                ],
                temperature=USAGE_TEMPERATURE,
                max_tokens=USAGE_MAX_TOKENS,
            )

            return FunctionUsageExplanation(function_name=function_name, where=completion.text, timestamp=self._now_ms())

        explanation, cached = await self._get_or_create(key=make_key(FUNCTION_USAGE_PREFIX, function_name, usage_context), create=create)

        return FunctionUsageExplanationResult.from_explanation(explanation=explanation, cached=cached)

    async def explain_repository_function(
        self,
        owner: OWNER,
        repo: REPO,
        path: PATH,
        function_name: FUNCTION_NAME,
        token: str,
        identifier: str | None = None,
    ) -> FunctionExplanationResult:
        """Find a function in a repository file and explain it, using the file path and line number as context."""

        if identifier is not None:
            self.require_rate_limit(identifier=identifier)

        file: RepositoryFileWithContent = await self.repository_server.get_file(owner=owner, repo=repo, path=path, token=token)

        parser = self.repository_server.parser

        matching_functions: list[CodeFunction] = [
            function for function in parser.extract_functions(text=file.content, file_path=path) if function.name == function_name
        ]

        if not matching_functions:
            raise ClientRequestError(message="Function not found", extra_info={"function_name": function_name, "path": path})

        function: CodeFunction = matching_functions[0]

        code: str = parser.extract_function_source(text=file.content, name=function_name) or placeholder_source(function=function)

        return await self.explain_function(function_name=function_name, code=code, context=f"Located in {path} at line {function.line}")
