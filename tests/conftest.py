import base64
import json
from collections.abc import Awaitable, Callable, Sequence
from types import SimpleNamespace
from typing import Any, overload

import httpx
import pytest
from fastmcp.client.client import CallToolResult
from githubkit import GitHub
from githubkit.exception import RequestFailed
from githubkit.response import Response
from githubkit.versions.v2022_11_28.models import ContentFile, GitTree, GitTreePropTreeItems
from pydantic import BaseModel

from repo_explainer_mcp.clients.completions import CompletionProvider
from repo_explainer_mcp.clients.errors.github import GitHubRequestError, ResourceNotFoundError
from repo_explainer_mcp.clients.github import GitHubExplorerClient
from repo_explainer_mcp.clients.models.github import Repository, RepositoryFileWithContent
from repo_explainer_mcp.models.repository.tree import RepositoryTree, RepositoryTreeEntry

START_TIME = 1_700_000_000.0


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# Completion providers

CompletionHandler = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


def chat_completion_response(content: str | None) -> httpx.Response:
    return httpx.Response(
        status_code=200,
        json={
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "created": 0,
            "model": "test-model",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        },
    )


class RecordingHandler:
    """Answers chat completion requests with a fixed response and keeps the request bodies."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: list[dict[str, Any]] = []

    @classmethod
    def answering(cls, content: str | None) -> "RecordingHandler":
        return cls(respond=lambda _: chat_completion_response(content))

    @classmethod
    def failing(cls, status_code: int, body: str = "upstream unavailable") -> "RecordingHandler":
        return cls(respond=lambda _: httpx.Response(status_code=status_code, text=body))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return self.respond(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)


def mock_provider(name: str, handler: CompletionHandler) -> CompletionProvider:
    return CompletionProvider(
        name=name,
        api_key="test-key",
        base_url=f"https://{name}.test/v1",
        model="test-model",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


# GitHub

SAMPLE_FILES: dict[str, str] = {
    "src/lib/math.ts": """import { log } from "./log"

export function add(a: number, b: number): number {
  return a + b
}

export const double = (value: number) => add(value, value);
""",
    "src/components/Counter.tsx": """import React from "react"
import { add } from "../lib/math"

export function Counter({ start }: CounterProps) {
  const next = add(start, 1)
  return <span>{next}</span>
}
""",
    "README.md": "# Sample\n",
}

SAMPLE_REPOSITORY = Repository(
    id=1,
    name="sample",
    full_name="octocat/sample",
    description="A sample repository",
    url="https://github.com/octocat/sample",
    language="TypeScript",
    stars=42,
    private=False,
    default_branch="main",
)


class FakeGitHubExplorerClient(GitHubExplorerClient):
    """Serves repositories, trees and files from memory and records the file requests."""

    def __init__(
        self,
        files: dict[str, str] | None = None,
        repositories: list[Repository] | None = None,
        failing_paths: Sequence[str] = (),
        fail_everything: bool = False,
    ):
        super().__init__(githubkit_client=GitHub("fake-token"))
        self.files = SAMPLE_FILES if files is None else files
        self.repositories = [SAMPLE_REPOSITORY] if repositories is None else repositories
        self.failing_paths = failing_paths
        self.fail_everything = fail_everything
        self.requested_paths: list[str] = []

    def _require_success(self, action: str) -> None:
        if self.fail_everything:
            raise GitHubRequestError(action=action, message="Bad credentials")

    async def list_repositories(self, per_page: int = 100) -> list[Repository]:
        self._require_success(action="List repositories")
        return self.repositories[:per_page]

    async def get_repository_tree(self, owner: str, repo: str, ref: str | None = None) -> RepositoryTree:
        self._require_success(action="Get repository tree")
        return RepositoryTree(entries=[RepositoryTreeEntry(path=path, type="blob", size=len(text)) for path, text in self.files.items()])

    async def get_file(  # pyright: ignore[reportIncompatibleMethodOverride]
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: bool = False
    ) -> RepositoryFileWithContent | None:
        self._require_success(action="Get file")
        self.requested_paths.append(path)

        if path in self.failing_paths:
            raise GitHubRequestError(action="Get file", message="Server error")

        if path not in self.files:
            if error_on_not_found:
                raise ResourceNotFoundError(action="Get file", resource=path)
            return None

        return RepositoryFileWithContent.from_text(path=path, text=self.files[path])


def request_failed(status_code: int, path: str) -> RequestFailed:
    raw_response = httpx.Response(status_code=status_code, request=httpx.Request(method="GET", url=f"https://api.github.com{path}"))

    return RequestFailed(Response(raw_response, Any))


def content_file(path: str, raw_content: bytes) -> ContentFile:
    return ContentFile.model_construct(type="file", path=path, name=path.rsplit("/", 1)[-1], content=base64.b64encode(raw_content).decode())


def git_tree(paths: Sequence[str]) -> GitTree:
    return GitTree.model_construct(
        truncated=False, tree=[GitTreePropTreeItems.model_construct(path=path, type="blob", size=1) for path in paths]
    )


GitHubResponder = Callable[[str, dict[str, Any]], Any]


class ScriptedGitHubExplorerClient(GitHubExplorerClient):
    """Runs the real client against scripted githubkit responses.

    `respond` receives the githubkit method name and its arguments and returns the parsed data, or raises
    `RequestFailed` to simulate an error status."""

    def __init__(self, respond: GitHubResponder):
        super().__init__(githubkit_client=GitHub("fake-token"))
        self.respond = respond
        self.requests: list[tuple[str, dict[str, Any]]] = []

    async def _request(self, action: str, method: Callable[..., Awaitable[Any]], error_on_not_found: bool, **request_args: Any) -> Any:  # pyright: ignore[reportIncompatibleMethodOverride]
        method_name: str = method.__name__
        self.requests.append((method_name, request_args))

        async def scripted_method(**kwargs: Any) -> SimpleNamespace:
            return SimpleNamespace(parsed_data=self.respond(method_name, kwargs))

        scripted_method.__name__ = method_name

        return await super()._request(action, scripted_method, error_on_not_found, **request_args)


class FakeClientFactory:
    """Hands out one fake client and remembers the tokens it was asked for."""

    def __init__(self, client: GitHubExplorerClient | None = None):
        self.client = client or FakeGitHubExplorerClient()
        self.tokens: list[str] = []

    def __call__(self, token: str) -> GitHubExplorerClient:
        self.tokens.append(token)
        return self.client


@pytest.fixture
def fake_github_client() -> FakeGitHubExplorerClient:
    return FakeGitHubExplorerClient()


@pytest.fixture
def client_factory(fake_github_client: FakeGitHubExplorerClient) -> FakeClientFactory:
    return FakeClientFactory(client=fake_github_client)


# Snapshots


@overload
def dump_for_snapshot(basemodel: None, /, exclude_keys: list[str] | None = None, **dump_kwargs: Any) -> None: ...


@overload
def dump_for_snapshot(basemodel: BaseModel, /, exclude_keys: list[str] | None = None, **dump_kwargs: Any) -> dict[str, Any]: ...


def dump_for_snapshot(basemodel: None | BaseModel, /, exclude_keys: list[str] | None = None, **dump_kwargs: Any) -> dict[str, Any] | None:
    if basemodel is None:
        return None

    dumped: dict[str, Any] = basemodel.model_dump(**dump_kwargs)

    return {key: value for key, value in dumped.items() if key not in (exclude_keys or [])}


def dump_list_for_snapshot(basemodels: Sequence[BaseModel], /, exclude_keys: list[str] | None = None, **dump_kwargs: Any) -> list[dict[str, Any]]:
    return [dump_for_snapshot(basemodel, exclude_keys=exclude_keys, **dump_kwargs) for basemodel in basemodels]


def dump_call_tool_result_for_snapshot(call_tool_result: CallToolResult, /) -> dict[str, Any]:
    return {
        "content": [item.model_dump() for item in call_tool_result.content],
        "structured_content": call_tool_result.structured_content,
    }
