ExtraInfoType = dict[str, str | None]


class GitHubClientError(Exception):
    """An error from the GitHub explorer client."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class GitHubRequestError(GitHubClientError):
    """A request to GitHub failed."""

    def __init__(self, action: str, message: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(message="A GitHub request error occurred.", extra_info={"action": action, "message": message, **extra_info})


class ResourceNotFoundError(GitHubRequestError):
    """The requested GitHub resource does not exist or is not visible to the token."""

    def __init__(self, action: str, resource: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(
            action=action,
            message="The resource could not be found.",
            extra_info={"resource": resource, **extra_info},
        )


class ResourceTypeMismatchError(GitHubRequestError):
    """GitHub returned a different kind of resource than requested, for example a directory instead of a file."""

    def __init__(self, action: str, resource: str, expected_type: type, actual_type: type):
        super().__init__(action, f"{resource}: Expected {expected_type.__name__}, got {actual_type.__name__}")


class ResourceDecodeError(GitHubRequestError):
    """The file exists but its content is not UTF-8 text, for example an image."""

    def __init__(self, action: str, resource: str):
        super().__init__(action, f"{resource}: Content is not UTF-8 text")
