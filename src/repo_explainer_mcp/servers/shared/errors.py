ExtraInfoType = dict[str, str | None]


class ServerError(Exception):
    """A request error from the Repo Explainer server."""

    status_code: int = 500

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class ClientRequestError(ServerError):
    """The request is missing a required field or a field is invalid."""

    status_code: int = 400


class AuthError(ServerError):
    """The request did not carry a GitHub token."""

    status_code: int = 401

    def __init__(self, message: str = "Unauthorized", extra_info: ExtraInfoType | None = None):
        super().__init__(message=message, extra_info=extra_info)


class RateLimitError(ServerError):
    """The caller has used up its requests for the current window."""

    status_code: int = 429

    retry_after: int

    def __init__(self, identifier: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(message="Rate limit exceeded", extra_info={"identifier": identifier, "retry_after": str(retry_after)})


class UpstreamError(ServerError):
    """GitHub or every completion provider failed."""

    status_code: int = 500


class ConfigError(ServerError):
    """A required setting, such as a completion provider API key, is missing."""

    status_code: int = 500
