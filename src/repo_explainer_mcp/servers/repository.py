import asyncio
from collections.abc import Callable
from logging import Logger
from typing import Any

from fastmcp.server import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool_transform import ArgTransform, TransformedTool
from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from repo_explainer_mcp.clients.github import GitHubExplorerClient
from repo_explainer_mcp.clients.models.github import Repository, RepositoryFileWithContent
from repo_explainer_mcp.models.repository.tree import RepositoryTree
from repo_explainer_mcp.parsing.base import CodeParser
from repo_explainer_mcp.parsing.models import CodeFunction, DependencyGraph, FeatureMapping, FileDependencies
from repo_explainer_mcp.parsing.regex import RegexCodeParser
from repo_explainer_mcp.servers.shared.annotations import (
    OWNER,
    OWNER_ARG_TRANSFORM,
    PATH,
    PATH_ARG_TRANSFORM,
    REF,
    REPO,
    REPO_ARG_TRANSFORM,
)
from repo_explainer_mcp.servers.shared.utility import require_github_token

MAX_FILES = 50
MAX_FUNCTIONS_PER_FILE = 10

GitHubClientFactory = Callable[[str], GitHubExplorerClient]


def hidden_token() -> ArgTransform:
    return ArgTransform(hide=True, default_factory=require_github_token)


class RepositoryAnalysis(BaseModel):
    """Functions, dependencies and features extracted from the code files of a repository."""

    owner: str = Field(description="The owner of the repository.")
    repo: str = Field(description="The name of the repository.")
    functions: list[CodeFunction] = Field(default_factory=list, description="The functions found in the code files.")
    dependencies: dict[str, FileDependencies] = Field(default_factory=dict, description="The imports and exports of each code file.")
    graph: DependencyGraph = Field(default_factory=DependencyGraph, description="The files connected to the functions they call.")
    features: list[FeatureMapping] = Field(default_factory=list, description="The code files grouped by feature directory.")


class RepositoryServer:
    """Browses repositories with a caller-supplied GitHub token and discovers the functions in their code files."""

    client_factory: GitHubClientFactory
    parser: CodeParser
    logger: Logger

    def __init__(self, client_factory: GitHubClientFactory | None = None, parser: CodeParser | None = None, logger: Logger | None = None):
        self.logger = logger or get_logger(name=__name__)
        self.client_factory = client_factory or GitHubExplorerClient.from_token
        self.parser = parser or RegexCodeParser()

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        owner_repo_args = {
            "owner": OWNER_ARG_TRANSFORM,
            "repo": REPO_ARG_TRANSFORM,
        }

        tools: list[TransformedTool] = [
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.list_repositories),
                description="List the repositories the configured GitHub token can access, most recently updated first.",
                transform_args={"token": hidden_token()},
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.list_files),
                description="List the files and directories of a repository.",
                transform_args={**owner_repo_args, "token": hidden_token()},
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.get_file),
                description="Get the decoded content of a file in a repository.",
                transform_args={**owner_repo_args, "path": PATH_ARG_TRANSFORM, "token": hidden_token()},
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.find_functions),
                description=f"Find the functions in up to {MAX_FILES} JavaScript and TypeScript files of a repository.",
                transform_args={**owner_repo_args, "token": hidden_token()},
            ),
            TransformedTool.from_tool(
                tool=Tool.from_function(fn=self.analyze_repository),
                description="Find the functions, imports, exports, call graph and feature directories of a repository's code files.",
                transform_args={**owner_repo_args, "token": hidden_token()},
            ),
        ]

        for tool in tools:
            _ = fastmcp.add_tool(tool=tool)

        return fastmcp

    async def list_repositories(self, token: str) -> list[Repository]:
        """List the repositories of the authenticated user."""

        return await self.client_factory(token).list_repositories()

    async def list_files(self, owner: OWNER, repo: REPO, token: str, ref: REF = None) -> RepositoryTree:
        """List the entries of a repository's tree."""

        return await self.client_factory(token).get_repository_tree(owner=owner, repo=repo, ref=ref)

    async def get_file(self, owner: OWNER, repo: REPO, path: PATH, token: str, ref: REF = None) -> RepositoryFileWithContent:
        """Get a file from a repository."""

        return await self.client_factory(token).get_file(owner=owner, repo=repo, path=path, ref=ref, error_on_not_found=True)

    async def find_functions(self, owner: OWNER, repo: REPO, token: str, ref: REF = None) -> list[CodeFunction]:
        """Find the functions in a repository's code files."""

        code_files: list[RepositoryFileWithContent] = await self._get_code_files(owner=owner, repo=repo, token=token, ref=ref)

        return self._extract_functions(code_files=code_files)

    async def analyze_repository(self, owner: OWNER, repo: REPO, token: str, ref: REF = None) -> RepositoryAnalysis:
        """Find the functions, dependencies and features of a repository's code files."""

        code_files: list[RepositoryFileWithContent] = await self._get_code_files(owner=owner, repo=repo, token=token, ref=ref)

        functions: list[CodeFunction] = self._extract_functions(code_files=code_files)

        file_contents: dict[str, str] = {code_file.path: code_file.content for code_file in code_files}

        return RepositoryAnalysis(
            owner=owner,
            repo=repo,
            functions=functions,
            dependencies={path: self.parser.extract_dependencies(text=content) for path, content in file_contents.items()},
            graph=self.parser.build_dependency_graph(file_contents=file_contents, functions=functions),
            features=self.parser.map_features(file_paths=file_contents.keys(), functions=functions),
        )

    def _extract_functions(self, code_files: list[RepositoryFileWithContent]) -> list[CodeFunction]:
        return [
            function
            for code_file in code_files
            for function in self.parser.extract_functions(text=code_file.content, file_path=code_file.path)[:MAX_FUNCTIONS_PER_FILE]
        ]

    async def _get_code_files(self, owner: str, repo: str, token: str, ref: str | None = None) -> list[RepositoryFileWithContent]:
        """Fetch up to `MAX_FILES` code files concurrently. Files that fail to load are logged and skipped."""

        client: GitHubExplorerClient = self.client_factory(token)

        repository_tree: RepositoryTree = await client.get_repository_tree(owner=owner, repo=repo, ref=ref)

        code_file_paths: list[str] = repository_tree.code_file_paths(limit_results=MAX_FILES)

        self.logger.info(f"Fetching {len(code_file_paths)} code files from {owner}/{repo}")

        results: list[RepositoryFileWithContent | None | BaseException] = await asyncio.gather(
            *[client.get_file(owner=owner, repo=repo, path=path, ref=ref) for path in code_file_paths], return_exceptions=True
        )

        [self.logger.error(f"Error getting file {result}") for result in results if isinstance(result, BaseException)]

        return [result for result in results if isinstance(result, RepositoryFileWithContent)]
