from fnmatch import fnmatch
from typing import Literal, Self

from githubkit.versions.v2022_11_28.models import GitTree
from pydantic import BaseModel, Field

CODE_FILE_PATTERNS: list[str] = ["*.ts", "*.tsx", "*.js", "*.jsx"]

TreeEntryType = Literal["blob", "tree", "commit"]


def is_code_file(path: str) -> bool:
    return any(fnmatch(path, pattern) for pattern in CODE_FILE_PATTERNS)


class RepositoryTreeEntry(BaseModel):
    path: str = Field(description="The path of the entry, relative to the repository root.")
    type: TreeEntryType = Field(description="`blob` for files, `tree` for directories and `commit` for submodules.")
    size: int | None = Field(default=None, description="The size of the file in bytes. Only present for files.")


class RepositoryTree(BaseModel):
    entries: list[RepositoryTreeEntry] = Field(default_factory=list, description="The entries of the tree, in the order GitHub returns them.")
    truncated: bool = Field(
        default=False,
        description="Whether the results have been truncated. If true, the results do not contain all files.",
    )

    @classmethod
    def from_git_tree(cls, git_tree: GitTree) -> Self:
        entries: list[RepositoryTreeEntry] = [
            RepositoryTreeEntry(
                path=tree_item.path,
                type=tree_item.type,  # pyright: ignore[reportArgumentType]
                size=tree_item.size if isinstance(tree_item.size, int) else None,
            )
            for tree_item in git_tree.tree
            if tree_item.type in ("blob", "tree", "commit")
        ]

        return cls(entries=entries, truncated=git_tree.truncated)

    def file_paths(self) -> list[str]:
        """Return the paths of all files in the tree."""

        return [entry.path for entry in self.entries if entry.type == "blob"]

    def code_file_paths(self, limit_results: int | None = None) -> list[str]:
        """The paths of JavaScript and TypeScript files, in tree order."""

        file_paths: list[str] = [path for path in self.file_paths() if is_code_file(path)]

        return file_paths if limit_results is None else file_paths[:limit_results]
