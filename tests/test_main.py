from collections.abc import AsyncGenerator
from typing import Any

import pytest
from dirty_equals import IsInt
from fastmcp.client import Client
from fastmcp.client.transports import FastMCPTransport
from fastmcp.exceptions import ToolError
from inline_snapshot import snapshot

from repo_explainer_mcp.main import mcp, new_mcp_server
from repo_explainer_mcp.utilities.cache import CacheManager
from repo_explainer_mcp.utilities.rate_limit import RateLimiter
from tests.conftest import FakeClientFactory, FakeClock, RecordingHandler, mock_provider


def test_main():
    assert mcp is not None


@pytest.fixture
async def main_mcp_client() -> AsyncGenerator[Client[FastMCPTransport], Any]:
    async with Client[FastMCPTransport](transport=mcp) as mcp_client:
        yield mcp_client


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler.answering("It adds two numbers.")


@pytest.fixture
async def test_mcp_client(
    clock: FakeClock, handler: RecordingHandler, client_factory: FakeClientFactory
) -> AsyncGenerator[Client[FastMCPTransport], Any]:
    test_mcp = new_mcp_server(
        providers=[mock_provider(name="routeway", handler=handler)],
        client_factory=client_factory,
        cache=CacheManager(clock=clock),
        rate_limiter=RateLimiter(default_max_requests=2, default_window=60, clock=clock),
        clock=clock,
    )

    async with Client[FastMCPTransport](transport=test_mcp) as mcp_client:
        yield mcp_client


async def test_list_tools(main_mcp_client: Client[FastMCPTransport]):
    list_tools = await main_mcp_client.list_tools()

    assert sorted(tool.name for tool in list_tools) == snapshot(
        [
            "analyze_repository",
            "explain_function",
            "explain_function_usage",
            "explain_repository_function",
            "find_functions",
            "get_file",
            "list_files",
            "list_repositories",
        ]
    )


async def test_hidden_arguments(main_mcp_client: Client[FastMCPTransport]):
    list_tools = await main_mcp_client.list_tools()

    for tool in list_tools:
        properties: dict[str, Any] = tool.inputSchema.get("properties", {})
        assert "token" not in properties
        assert "identifier" not in properties

    explain_function = next(tool for tool in list_tools if tool.name == "explain_function")
    assert sorted(explain_function.inputSchema["properties"]) == ["code", "context", "function_name"]


async def test_explain_function_tool(test_mcp_client: Client[FastMCPTransport], handler: RecordingHandler):
    arguments = {"function_name": "add", "code": "function add(a, b) { return a + b }"}

    first_result = await test_mcp_client.call_tool("explain_function", arguments=arguments)
    second_result = await test_mcp_client.call_tool("explain_function", arguments=arguments)

    assert first_result.structured_content == snapshot(
        {"function_name": "add", "how": "It adds two numbers.", "timestamp": IsInt(), "cached": False}
    )
    assert second_result.structured_content is not None
    assert second_result.structured_content["cached"] is True
    assert handler.call_count == 1


async def test_tools_share_one_rate_limit(test_mcp_client: Client[FastMCPTransport]):
    for index in range(2):
        _ = await test_mcp_client.call_tool("explain_function", arguments={"function_name": f"f{index}", "code": "return 1"})

    with pytest.raises(ToolError, match="Rate limit exceeded"):
        _ = await test_mcp_client.call_tool("explain_function", arguments={"function_name": "f2", "code": "return 1"})


class TestGitHubToken:
    @pytest.fixture(autouse=True)
    def clear_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GITHUB_PERSONAL_ACCESS_TOKEN", raising=False)

    async def test_missing_token(self, test_mcp_client: Client[FastMCPTransport], client_factory: FakeClientFactory):
        with pytest.raises(ToolError, match="GITHUB_TOKEN"):
            _ = await test_mcp_client.call_tool("list_repositories", arguments={})

        assert client_factory.tokens == []

    async def test_token_from_environment(
        self, test_mcp_client: Client[FastMCPTransport], client_factory: FakeClientFactory, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("GITHUB_PERSONAL_ACCESS_TOKEN", "env-token")

        result = await test_mcp_client.call_tool("find_functions", arguments={"owner": "octocat", "repo": "sample"})

        assert client_factory.tokens == ["env-token"]
        assert result.structured_content is not None
        assert [function["name"] for function in result.structured_content["result"]] == ["add", "double", "Counter"]

    async def test_explain_repository_function(
        self, test_mcp_client: Client[FastMCPTransport], handler: RecordingHandler, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")

        result = await test_mcp_client.call_tool(
            "explain_repository_function",
            arguments={"owner": "octocat", "repo": "sample", "path": "src/lib/math.ts", "function_name": "add"},
        )

        assert result.structured_content is not None
        assert result.structured_content["how"] == "It adds two numbers."
        assert "Context: Located in src/lib/math.ts at line 3" in handler.requests[0]["messages"][1]["content"]


def test_malformed_environment_does_not_break_startup(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RATE_LIMIT_REQUESTS", "abc")
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "")

    assert new_mcp_server(providers=[]) is not None
