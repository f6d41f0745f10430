"""Lexical extraction of functions and dependencies from JavaScript and TypeScript source.

Everything here is pattern matching over raw text. False positives and negatives are expected: there is no
scope, type or syntax awareness, and unmatched input simply produces no results."""

import re
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from repo_explainer_mcp.parsing.models import (
    CodeFunction,
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    FeatureMapping,
    FileDependencies,
    FunctionKind,
)

RETURN_TYPE = r"(?:\s*:\s*[^{};=]+?)?"

FUNCTION_DECLARATION_PATTERN = re.compile(r"\b(?:export\s+)?(?:async\s+)?function\s+(?P<name>\w+)\s*\((?P<params>.*?)\)")

ARROW_FUNCTION_PATTERN = re.compile(
    r"\b(?:export\s+)?(?P<keyword>const|let|var)\s+(?P<name>\w+)\s*=\s*(?:async\s*)?\((?P<params>.*?)\)" + RETURN_TYPE + r"\s*=>"
)

IMPORT_PATTERN = re.compile(r"""\bimport\s+(?:type\s+)?[\w$*\s{},]+?\s+from\s+['"](?P<source>[^'"]+)['"]""")
EXPORT_PATTERN = re.compile(r"\bexport\s+(?:default\s+)?(?:async\s+)?(?:function|const|class|interface)\s+(?P<name>\w+)")

CALL_PATTERN = re.compile(r"(?P<name>\w+)\s*\(")

COMPONENT_FILE_EXTENSIONS = (".tsx", ".jsx")

CONTAINER_DIRECTORIES = frozenset({"src", "app"})
DEFAULT_FEATURE = "root"

DEFAULT_SOURCE_LIMIT = 800

OPENING_BRACKETS = "([{<"
CLOSING_BRACKETS = ")]}>"


def split_top_level(text: str, separator: str, maxsplit: int = -1) -> list[str]:
    """Split text on a single character separator, ignoring separators nested in brackets."""

    parts: list[str] = []
    depth: int = 0
    current: list[str] = []

    for character in text:
        if character in OPENING_BRACKETS:
            depth += 1
        elif character in CLOSING_BRACKETS:
            depth = max(0, depth - 1)
        elif character == separator and depth == 0 and (maxsplit < 0 or len(parts) < maxsplit):
            parts.append("".join(current))
            current = []
            continue

        current.append(character)

    parts.append("".join(current))

    return parts


def parse_params(params_text: str) -> list[str]:
    """Turn a parameter list into parameter names, dropping type annotations and empty entries."""

    params: list[str] = []

    for token in split_top_level(params_text, ","):
        name: str = split_top_level(token, ":", maxsplit=1)[0].strip()
        if name:
            params.append(name)

    return params


def line_number_at(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def get_function_kind(file_path: str, name: str) -> FunctionKind:
    if file_path.endswith(COMPONENT_FILE_EXTENSIONS) and name[:1].isupper():
        return "component"

    return "function"


def get_feature(file_path: str) -> str:
    """The first segment of the path, or the second when the first is a container directory like `src`.

    Files at the top level of the repository, and container directories with an empty second segment, are `root`."""

    segments: list[str] = file_path.split("/")

    if len(segments) == 1:
        return DEFAULT_FEATURE

    if segments[0] in CONTAINER_DIRECTORIES:
        return segments[1] or DEFAULT_FEATURE

    return segments[0]


class RegexCodeParser:
    """A CodeParser built on regular expressions."""

    def extract_functions(self, text: str, file_path: str) -> list[CodeFunction]:
        """Find function declarations, then arrow functions bound to variables, in the order they appear."""

        functions: list[CodeFunction] = []

        for match in FUNCTION_DECLARATION_PATTERN.finditer(text):
            name, params_text = match.group("name"), match.group("params")
            functions.append(
                CodeFunction.new(
                    file=file_path,
                    name=name,
                    line=line_number_at(text, match.start()),
                    kind=get_function_kind(file_path, name),
                    signature=f"function {name}({params_text})",
                    params=parse_params(params_text),
                )
            )

        for match in ARROW_FUNCTION_PATTERN.finditer(text):
            name, params_text = match.group("name"), match.group("params")
            functions.append(
                CodeFunction.new(
                    file=file_path,
                    name=name,
                    line=line_number_at(text, match.start()),
                    kind=get_function_kind(file_path, name),
                    signature=f"{match.group('keyword')} {name} = ({params_text}) =>",
                    params=parse_params(params_text),
                )
            )

        return functions

    def extract_dependencies(self, text: str) -> FileDependencies:
        return FileDependencies(
            imports=[match.group("source") for match in IMPORT_PATTERN.finditer(text)],
            exports=[match.group("name") for match in EXPORT_PATTERN.finditer(text)],
        )

    def build_dependency_graph(self, file_contents: Mapping[str, str], functions: Sequence[CodeFunction]) -> DependencyGraph:
        """Connect each file to the functions it appears to call.

        Calls are matched by function name only. When several functions share a name, the last one wins."""

        nodes: dict[str, DependencyNode] = {}
        functions_by_name: dict[str, CodeFunction] = {}

        for file_path in file_contents:
            _ = nodes.setdefault(file_path, DependencyNode(id=file_path, label=file_path.split("/")[-1] or file_path, type="file"))

        for function in functions:
            _ = nodes.setdefault(function.id, DependencyNode(id=function.id, label=function.name, type="function", file=function.file))
            functions_by_name[function.name] = function

        edges: dict[tuple[str, str], DependencyEdge] = {}

        for file_path, text in file_contents.items():
            for match in CALL_PATTERN.finditer(text):
                if called_function := functions_by_name.get(match.group("name")):
                    _ = edges.setdefault((file_path, called_function.id), DependencyEdge(source=file_path, target=called_function.id))

        return DependencyGraph(nodes=list(nodes.values()), edges=list(edges.values()))

    def map_features(self, file_paths: Iterable[str], functions: Sequence[CodeFunction] | None = None) -> list[FeatureMapping]:
        files_by_feature: dict[str, dict[str, None]] = defaultdict(dict)

        for file_path in file_paths:
            files_by_feature[get_feature(file_path)][file_path] = None

        function_ids_by_file: dict[str, list[str]] = defaultdict(list)

        for function in functions or []:
            function_ids_by_file[function.file].append(function.id)

        return [
            FeatureMapping(
                feature=feature,
                files=list(files),
                functions=[function_id for file_path in files for function_id in function_ids_by_file[file_path]],
                description=f"{feature} feature",
            )
            for feature, files in files_by_feature.items()
        ]

    def extract_function_source(self, text: str, name: str, limit: int = DEFAULT_SOURCE_LIMIT) -> str | None:
        """Find the source of a named function: a declaration with its body, or an arrow function with a block or
        expression body. Bodies end at the first closing brace, so nested blocks are cut short."""

        escaped_name: str = re.escape(name)

        patterns: list[re.Pattern[str]] = [
            re.compile(rf"(?:export\s+)?(?:async\s+)?function\s+{escaped_name}\s*\([^)]*\){RETURN_TYPE}\s*\{{[^}}]*\}}", re.DOTALL),
            re.compile(rf"(?:const|let|var)\s+{escaped_name}\s*=\s*(?:async\s*)?\([^)]*\){RETURN_TYPE}\s*=>\s*\{{[^}}]*\}}", re.DOTALL),
            re.compile(rf"(?:const|let|var)\s+{escaped_name}\s*=\s*(?:async\s*)?\([^)]*\){RETURN_TYPE}\s*=>\s*[^;]+;", re.DOTALL),
        ]

        for pattern in patterns:
            if match := pattern.search(text):
                return match.group(0)[:limit]

        return None
