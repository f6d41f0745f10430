"""The JSON HTTP surface, served as custom routes next to the MCP endpoint.

Errors are returned as `{"error": message}` with the status code of the `ServerError` raised. GitHub failures are
reported as upstream errors."""

from collections.abc import Awaitable, Callable
from functools import wraps
from logging import Logger
from typing import Any

from fastmcp.server import FastMCP
from fastmcp.utilities.logging import get_logger
from pydantic import AliasChoices, BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from repo_explainer_mcp.clients.errors.github import GitHubClientError
from repo_explainer_mcp.servers.explain import ExplainServer
from repo_explainer_mcp.servers.repository import RepositoryServer
from repo_explainer_mcp.servers.shared.errors import ClientRequestError, RateLimitError, ServerError, UpstreamError
from repo_explainer_mcp.servers.shared.utility import get_bearer_token, get_client_identifier

logger: Logger = get_logger(name=__name__)

RouteHandler = Callable[[Request], Awaitable[Response]]

INTERNAL_SERVER_ERROR = 500


class ExplainFunctionRequest(BaseModel):
    function_name: str = Field(validation_alias=AliasChoices("functionName", "function_name"))
    code: str
    context: str | None = None


class ExplainUsageRequest(BaseModel):
    function_name: str = Field(validation_alias=AliasChoices("functionName", "function_name"))
    usage_context: str = Field(validation_alias=AliasChoices("usageContext", "usage_context"))
    code_snippets: str | None = Field(default=None, validation_alias=AliasChoices("codeSnippets", "code_snippets"))


def error_response(error: ServerError) -> JSONResponse:
    headers: dict[str, str] = {}

    if isinstance(error, RateLimitError):
        headers["Retry-After"] = str(error.retry_after)

    return JSONResponse({"error": str(error)}, status_code=error.status_code, headers=headers)


def handle_errors(handler: RouteHandler) -> RouteHandler:
    """Turn the errors raised by a route handler into JSON error responses."""

    @wraps(handler)
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except GitHubClientError as e:
            logger.exception(f"GitHub request failed for {request.url.path}")
            return error_response(UpstreamError(message="Failed to fetch from GitHub", extra_info={"reason": str(e)}))
        except ServerError as e:
            if e.status_code >= INTERNAL_SERVER_ERROR:
                logger.error(f"Request to {request.url.path} failed: {e}")
            return error_response(e)

    return wrapper


async def parse_body[T: BaseModel](request: Request, model: type[T]) -> T:
    try:
        return model.model_validate_json(await request.body())
    except ValidationError as e:
        raise ClientRequestError(message="Missing required fields", extra_info={"reason": str(e.errors()[0]["msg"])}) from e


def register_routes(fastmcp: FastMCP[Any], repository_server: RepositoryServer, explain_server: ExplainServer) -> FastMCP[Any]:
    @fastmcp.custom_route("/api/repos", methods=["GET"])
    @handle_errors
    async def list_repositories(request: Request) -> Response:
        repositories = await repository_server.list_repositories(token=get_bearer_token(request))

        return JSONResponse([repository.to_http_payload() for repository in repositories])

    @fastmcp.custom_route("/api/repos/{owner}/{repo}/files", methods=["GET"])
    @handle_errors
    async def list_files(request: Request) -> Response:
        repository_tree = await repository_server.list_files(
            owner=request.path_params["owner"],
            repo=request.path_params["repo"],
            token=get_bearer_token(request),
            ref=request.query_params.get("ref"),
        )

        return JSONResponse([entry.model_dump(mode="json") for entry in repository_tree.entries])

    @fastmcp.custom_route("/api/repos/{owner}/{repo}/file", methods=["GET"])
    @handle_errors
    async def get_file(request: Request) -> Response:
        token: str = get_bearer_token(request)

        if not (path := request.query_params.get("path")):
            raise ClientRequestError(message="Path parameter required")

        file = await repository_server.get_file(
            owner=request.path_params["owner"],
            repo=request.path_params["repo"],
            path=path,
            token=token,
            ref=request.query_params.get("ref"),
        )

        return PlainTextResponse(file.content)

    @fastmcp.custom_route("/api/repos/{owner}/{repo}/functions", methods=["GET"])
    @handle_errors
    async def find_functions(request: Request) -> Response:
        functions = await repository_server.find_functions(
            owner=request.path_params["owner"],
            repo=request.path_params["repo"],
            token=get_bearer_token(request),
            ref=request.query_params.get("ref"),
        )

        return JSONResponse([function.model_dump(mode="json") for function in functions])

    @fastmcp.custom_route("/api/repos/{owner}/{repo}/analysis", methods=["GET"])
    @handle_errors
    async def analyze_repository(request: Request) -> Response:
        analysis = await repository_server.analyze_repository(
            owner=request.path_params["owner"],
            repo=request.path_params["repo"],
            token=get_bearer_token(request),
            ref=request.query_params.get("ref"),
        )

        return JSONResponse(analysis.model_dump(mode="json"))

    @fastmcp.custom_route("/api/explain/function", methods=["POST"])
    @handle_errors
    async def explain_function(request: Request) -> Response:
        explain_server.require_rate_limit(identifier=get_client_identifier(request))

        body: ExplainFunctionRequest = await parse_body(request, ExplainFunctionRequest)

        result = await explain_server.explain_function(function_name=body.function_name, code=body.code, context=body.context)

        return JSONResponse(result.to_http_payload())

    @fastmcp.custom_route("/api/explain/usage", methods=["POST"])
    @handle_errors
    async def explain_usage(request: Request) -> Response:
        explain_server.require_rate_limit(identifier=get_client_identifier(request))

        body: ExplainUsageRequest = await parse_body(request, ExplainUsageRequest)

        result = await explain_server.explain_usage(
            function_name=body.function_name, usage_context=body.usage_context, code_snippets=body.code_snippets
        )

        return JSONResponse(result.to_http_payload())

    return fastmcp
