import binascii
from collections.abc import Awaitable, Callable, Sequence
from logging import Logger
from typing import Any, Literal, Self, overload

from fastmcp.utilities.logging import get_logger
from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from githubkit.retry import RetryChainDecision, RetryRateLimit, RetryServerError
from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
from githubkit.versions.v2022_11_28.models import GitTree as GitHubKitGitTree
from githubkit.versions.v2022_11_28.models import Repository as GitHubKitRepository
from pydantic import BaseModel

from repo_explainer_mcp.clients.errors.github import (
    GitHubRequestError,
    ResourceDecodeError,
    ResourceNotFoundError,
    ResourceTypeMismatchError,
)
from repo_explainer_mcp.clients.models.github import Repository, RepositoryFileWithContent
from repo_explainer_mcp.models.repository.tree import RepositoryTree
from repo_explainer_mcp.utilities.settings import get_github_timeout_seconds

NOT_FOUND_ERROR = 404

MAX_RATE_LIMIT_RETRIES = 3

GITHUBKIT_RESPONSE_TYPE = BaseModel | Sequence[BaseModel]

GitHubKitMethod = Callable[..., Awaitable[GitHubKitResponse[Any]]]

DEFAULT_BRANCHES: tuple[str, str] = ("main", "master")

DEFAULT_REPOSITORIES_PER_PAGE = 100


def get_githubkit_client(token: str, timeout: float | None = None) -> GitHubKit[TokenAuthStrategy]:
    """A githubkit client that retries server errors and rate limited requests."""

    return GitHubKit[TokenAuthStrategy](
        auth=TokenAuthStrategy(token=token),
        auto_retry=RetryChainDecision(RetryServerError(), RetryRateLimit(max_retry=MAX_RATE_LIMIT_RETRIES)),
        timeout=timeout or get_github_timeout_seconds(),
    )


def describe_request(method: GitHubKitMethod, request_args: dict[str, Any]) -> str:
    arguments: str = ", ".join(f"{key}={value}" for key, value in request_args.items())

    return f"{method.__name__}({arguments})"


class GitHubExplorerClient:
    """Reads repositories, trees and files on behalf of a single GitHub token."""

    githubkit_client: GitHubKit[Any]
    logger: Logger
    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any],
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
    ):
        self.githubkit_client = githubkit_client
        self.logger = logger or get_logger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    @classmethod
    def from_token(cls, token: str) -> Self:
        return cls(githubkit_client=get_githubkit_client(token=token))

    def _log_request(self, message: str) -> None:
        (self.logger.info if self.log_requests else self.logger.debug)(message)

    def _log_response(self, message: str) -> None:
        (self.logger.info if self.log_responses else self.logger.debug)(message)

    def _log_error(self, message: str) -> None:
        (self.logger.exception if self.log_on_error else self.logger.debug)(message)

    @overload
    async def _request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        error_on_not_found: Literal[True],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T: ...

    @overload
    async def _request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        error_on_not_found: bool,
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None: ...

    async def _request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        error_on_not_found: bool,
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None:
        """Call a githubkit REST method and return its parsed data.

        Raises:
            ResourceNotFoundError: If GitHub answers 404 and `error_on_not_found` is set.
            GitHubRequestError: If the request fails for any other reason.
        """

        request: str = describe_request(method=method, request_args=request_args)

        self._log_request(f"{action}: {request}")

        try:
            response: GitHubKitResponse[T] = await method(**request_args)
        except GitHubKitRequestFailed as e:
            if e.response.status_code != NOT_FOUND_ERROR:
                self._log_error(f"{action} failed with status {e.response.status_code}: {request}")
                raise GitHubRequestError(action=action, message=str(e), extra_info={"status": str(e.response.status_code)}) from e

            if error_on_not_found:
                raise ResourceNotFoundError(action=action, resource=e.request.url.path) from e

            self.logger.debug(f"{action} found nothing: {request}")

            return None
        except GitHubKitGitHubException as e:
            self._log_error(f"{action} failed: {request}")
            raise GitHubRequestError(action=action, message=str(e)) from e

        self._log_response(f"{action} succeeded: {request}")

        return response.parsed_data

    async def list_repositories(self, per_page: int = DEFAULT_REPOSITORIES_PER_PAGE) -> list[Repository]:
        """List the repositories of the authenticated user, most recently updated first."""

        repositories: list[GitHubKitRepository] = await self._request(
            action="List repositories",
            method=self.githubkit_client.rest.repos.async_list_for_authenticated_user,
            error_on_not_found=True,
            sort="updated",
            per_page=per_page,
        )

        return [Repository.from_githubkit_repository(repository=repository) for repository in repositories]

    async def get_repository_tree(self, owner: str, repo: str, ref: str | None = None) -> RepositoryTree:
        """Get the full recursive tree of a repository.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            ref: The branch, tag or commit to read the tree from. If not provided, `main` is tried, then `master`.
        """

        if ref is not None:
            return await self._get_tree(owner=owner, repo=repo, ref=ref, error_on_not_found=True)

        primary_branch, fallback_branch = DEFAULT_BRANCHES

        if tree := await self._get_tree(owner=owner, repo=repo, ref=primary_branch, error_on_not_found=False):
            return tree

        self.logger.info(f"No {primary_branch} branch found for {owner}/{repo}, trying {fallback_branch}")

        return await self._get_tree(owner=owner, repo=repo, ref=fallback_branch, error_on_not_found=True)

    @overload
    async def _get_tree(self, owner: str, repo: str, ref: str, error_on_not_found: Literal[True]) -> RepositoryTree: ...

    @overload
    async def _get_tree(self, owner: str, repo: str, ref: str, error_on_not_found: bool) -> RepositoryTree | None: ...

    async def _get_tree(self, owner: str, repo: str, ref: str, error_on_not_found: bool) -> RepositoryTree | None:
        git_tree: GitHubKitGitTree | None = await self._request(
            action="Get repository tree",
            method=self.githubkit_client.rest.git.async_get_tree,
            error_on_not_found=error_on_not_found,
            owner=owner,
            repo=repo,
            tree_sha=ref,
            recursive="1",
        )

        return RepositoryTree.from_git_tree(git_tree=git_tree) if git_tree else None

    @overload
    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: Literal[False] = False
    ) -> RepositoryFileWithContent | None: ...

    @overload
    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: Literal[True] = True
    ) -> RepositoryFileWithContent: ...

    async def get_file(
        self, owner: str, repo: str, path: str, ref: str | None = None, error_on_not_found: bool = False
    ) -> RepositoryFileWithContent | None:
        """Get a file from a repository and decode its content.

        Raises:
            ResourceTypeMismatchError: If the path is a directory, symlink or submodule.
            ResourceDecodeError: If the content is not UTF-8 text.
        """

        ref_args: dict[str, str] = {"ref": ref} if ref else {}

        content = await self._request(
            action="Get file",
            method=self.githubkit_client.rest.repos.async_get_content,
            error_on_not_found=error_on_not_found,
            owner=owner,
            repo=repo,
            path=path,
            **ref_args,
        )

        if content is None:
            return None

        if not isinstance(content, GitHubKitContentFile):
            raise ResourceTypeMismatchError(action="Get file", resource=path, expected_type=GitHubKitContentFile, actual_type=type(content))

        try:
            return RepositoryFileWithContent.from_content_file(content_file=content)
        except (binascii.Error, UnicodeDecodeError) as e:
            self.logger.warning(f"Could not decode {owner}/{repo}/{path}: {e}")
            raise ResourceDecodeError(action="Get file", resource=path) from e
