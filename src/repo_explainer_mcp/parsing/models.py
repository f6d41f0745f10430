from typing import Literal, Self

from pydantic import BaseModel, Field

FunctionKind = Literal["function", "method", "component"]


class CodeFunction(BaseModel):
    """A function found in a source file."""

    id: str = Field(description="The identifier of the function, the file path and the function name joined by a colon.")
    name: str = Field(description="The name of the function.")
    file: str = Field(description="The path of the file the function was found in.")
    line: int = Field(description="The 1-based line number the function starts on.")
    kind: FunctionKind = Field(default="function", description="The kind of function.")
    signature: str = Field(description="The signature of the function.")
    params: list[str] = Field(default_factory=list, description="The names of the function's parameters.")

    @classmethod
    def new(cls, file: str, name: str, line: int, kind: FunctionKind, signature: str, params: list[str]) -> Self:
        return cls(id=f"{file}:{name}", name=name, file=file, line=line, kind=kind, signature=signature, params=params)


class FileDependencies(BaseModel):
    imports: list[str] = Field(default_factory=list, description="The module paths imported by the file.")
    exports: list[str] = Field(default_factory=list, description="The names exported by the file.")


class DependencyNode(BaseModel):
    id: str = Field(description="The identifier of the node, a file path or a function id.")
    label: str = Field(description="The display label of the node.")
    type: Literal["file", "function"] = Field(description="Whether the node is a file or a function.")
    file: str | None = Field(default=None, description="The file a function node belongs to.")


class DependencyEdge(BaseModel):
    source: str = Field(description="The id of the calling file.")
    target: str = Field(description="The id of the called function.")
    label: str = Field(default="calls", description="The relationship between the nodes.")


class DependencyGraph(BaseModel):
    """Files and functions connected by name-matched calls. This is not a resolved call graph."""

    nodes: list[DependencyNode] = Field(default_factory=list, description="The file and function nodes.")
    edges: list[DependencyEdge] = Field(default_factory=list, description="The calls between files and functions.")


class FeatureMapping(BaseModel):
    """A group of files that share a directory."""

    feature: str = Field(description="The name of the feature, taken from the file paths.")
    files: list[str] = Field(default_factory=list, description="The paths of the files in the feature.")
    functions: list[str] = Field(default_factory=list, description="The ids of the functions found in the feature's files.")
    description: str = Field(description="A short description of the feature.")
