from typing import Annotated

from fastmcp.tools.tool_transform import ArgTransform
from pydantic import Field

OWNER_DESCRIPTION = "The owner of the repository."
OWNER = Annotated[str, Field(description=OWNER_DESCRIPTION)]
OWNER_ARG_TRANSFORM = ArgTransform(description=OWNER_DESCRIPTION)

REPO_DESCRIPTION = "The name of the repository."
REPO = Annotated[str, Field(description=REPO_DESCRIPTION)]
REPO_ARG_TRANSFORM = ArgTransform(description=REPO_DESCRIPTION)

PATH_DESCRIPTION = "The path of the file in the repository. For example, 'src/index.ts'."
PATH = Annotated[str, Field(description=PATH_DESCRIPTION)]
PATH_ARG_TRANSFORM = ArgTransform(description=PATH_DESCRIPTION)

REF = Annotated[str | None, Field(description="The branch, tag or commit to read from. If not provided, the default branch is used.")]

FUNCTION_NAME = Annotated[str, Field(description="The name of the function to explain.")]
CODE = Annotated[str, Field(description="The source code of the function.")]
CONTEXT = Annotated[str | None, Field(description="Where the function lives or anything else that helps explain it.")]
USAGE_CONTEXT = Annotated[str, Field(description="A description of where the function is used.")]
CODE_SNIPPETS = Annotated[str | None, Field(description="Code snippets showing the function being called.")]
