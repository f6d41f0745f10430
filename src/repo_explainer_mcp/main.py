from collections.abc import Sequence
from logging import Logger
from typing import Literal

import click
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import configure_logging, get_logger

from repo_explainer_mcp.clients.completions import CompletionProvider, get_completion_providers
from repo_explainer_mcp.parsing.base import CodeParser
from repo_explainer_mcp.servers.explain import ExplainServer
from repo_explainer_mcp.servers.http import register_routes
from repo_explainer_mcp.servers.repository import GitHubClientFactory, RepositoryServer
from repo_explainer_mcp.utilities.cache import CacheManager, Clock
from repo_explainer_mcp.utilities.rate_limit import RateLimiter

logger: Logger = get_logger(name=__name__)


def new_mcp_server(
    providers: Sequence[CompletionProvider] | None = None,
    client_factory: GitHubClientFactory | None = None,
    parser: CodeParser | None = None,
    cache: CacheManager | None = None,
    rate_limiter: RateLimiter | None = None,
    clock: Clock | None = None,
) -> FastMCP[None]:
    """Build the MCP server with its tools and HTTP routes. Collaborators that are not provided are built from the environment."""

    mcp: FastMCP[None] = FastMCP[None](name="Repo Explainer MCP")

    mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

    repository_server: RepositoryServer = RepositoryServer(client_factory=client_factory, parser=parser, logger=logger)
    _ = repository_server.register_tools(fastmcp=mcp)

    explain_server: ExplainServer = ExplainServer(
        providers=get_completion_providers() if providers is None else providers,
        cache=cache,
        rate_limiter=rate_limiter,
        repository_server=repository_server,
        logger=logger,
        clock=clock,
    )
    _ = explain_server.register_tools(fastmcp=mcp)

    _ = register_routes(fastmcp=mcp, repository_server=repository_server, explain_server=explain_server)

    return mcp


mcp: FastMCP[None] = new_mcp_server()


@click.command()
@click.option(
    "--mcp-transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="stdio",
    help="The transport to run the MCP server on",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    help="The level to log at",
)
def run_mcp(mcp_transport: Literal["stdio", "streamable-http"], log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]):
    configure_logging(level=log_level)

    mcp.run(transport=mcp_transport)


if __name__ == "__main__":
    run_mcp()
