from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from repo_explainer_mcp.parsing.models import CodeFunction, DependencyGraph, FeatureMapping, FileDependencies


class CodeParser(Protocol):
    """Extracts functions, dependencies and features from source text.

    Implementations are best-effort: malformed input produces empty results rather than errors."""

    def extract_functions(self, text: str, file_path: str) -> list[CodeFunction]: ...

    def extract_dependencies(self, text: str) -> FileDependencies: ...

    def build_dependency_graph(self, file_contents: Mapping[str, str], functions: Sequence[CodeFunction]) -> DependencyGraph: ...

    def map_features(self, file_paths: Iterable[str], functions: Sequence[CodeFunction] | None = None) -> list[FeatureMapping]: ...

    def extract_function_source(self, text: str, name: str, limit: int = ...) -> str | None: ...
