from starlette.requests import Request

from repo_explainer_mcp.servers.shared.errors import AuthError
from repo_explainer_mcp.utilities.settings import get_github_token

UNKNOWN_CLIENT = "unknown"


def require_github_token() -> str:
    """The GitHub token tools act with, read from the environment."""

    if token := get_github_token():
        return token

    raise AuthError(message="GITHUB_TOKEN or GITHUB_PERSONAL_ACCESS_TOKEN must be set")


def get_bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")

    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError

    return token.strip()


def get_client_identifier(request: Request) -> str:
    """The first `X-Forwarded-For` hop, falling back to the peer address."""

    if forwarded_for := request.headers.get("x-forwarded-for"):
        if first_hop := forwarded_for.split(",")[0].strip():
            return first_hop

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT
