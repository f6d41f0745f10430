import base64
from typing import Self

from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
from githubkit.versions.v2022_11_28.models import Repository as GitHubKitRepository
from pydantic import BaseModel, ConfigDict, Field


def decode_content(content: str) -> str:
    return base64.b64decode(content).decode("utf-8")


class Repository(BaseModel):
    """A repository the authenticated user can access."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int = Field(description="The GitHub id of the repository.")
    name: str = Field(description="The name of the repository.")
    full_name: str = Field(description="The owner and name of the repository, separated by a slash.")
    description: str | None = Field(description="The description of the repository.")
    url: str = Field(description="The URL of the repository.")
    language: str | None = Field(description="The primary language of the repository.")
    stars: int = Field(description="The number of stars the repository has.")
    private: bool = Field(description="Whether the repository is private.")
    default_branch: str = Field(description="The default branch of the repository.")

    @classmethod
    def from_githubkit_repository(cls, repository: GitHubKitRepository) -> Self:
        return cls(
            id=repository.id,
            name=repository.name,
            full_name=repository.full_name,
            description=repository.description,
            url=repository.html_url,
            language=repository.language,
            stars=repository.stargazers_count,
            private=repository.private,
            default_branch=repository.default_branch,
        )

    def to_http_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "fullName": self.full_name,
            "description": self.description,
            "url": self.url,
            "language": self.language,
            "stars": self.stars,
            "private": self.private,
            "defaultBranch": self.default_branch,
        }


class RepositoryFileWithContent(BaseModel):
    """A file with its path and decoded content."""

    path: str = Field(description="The path of the file.")
    content: str = Field(description="The decoded text content of the file.")
    total_lines: int = Field(description="The total number of lines in the file.")

    @classmethod
    def from_text(cls, path: str, text: str) -> Self:
        return cls(path=path, content=text, total_lines=len(text.split("\n")))

    @classmethod
    def from_content_file(cls, content_file: GitHubKitContentFile) -> Self:
        return cls.from_text(path=content_file.path, text=decode_content(content_file.content))
