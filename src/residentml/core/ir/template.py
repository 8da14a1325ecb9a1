"""
Template IR: parsed markup nodes, islands and the compiled artifact.

The compiled artifact is a pure function of the markup text and serialises
to JSON so a server render can hand it to client-side hydration.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from residentml.core.ir.actions import ActionStep, EventBinding
from residentml.core.ir.variables import VariableSpec

TEXT_TAG = "#text"
ROOT_TAG = "#root"
FRAGMENT_TAG = "Fragment"
ISLAND_TAG = "#island"  # AST reference to an extracted island, attribute "id"


class SourceSpan(BaseModel):
    """Location of a node in the markup (1-indexed)."""

    line: int
    column: int
    end_line: int | None = None
    end_column: int | None = None

    model_config = ConfigDict(frozen=True)


class TemplateNode(BaseModel):
    """
    A node of the template AST.

    Text nodes use tag ``#text`` and carry ``text``; the document root uses
    ``#root``. DSL tags carry their canonical name (``ShowVar``), structural
    HTML tags are lower case. Attribute names are lower case.
    """

    tag: str
    attributes: dict[str, str] = Field(default_factory=dict)
    children: list[TemplateNode] = Field(default_factory=list)
    span: SourceSpan | None = None
    text: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_text(self) -> bool:
        return self.tag == TEXT_TAG

    def attr(self, name: str, default: str | None = None) -> str | None:
        return self.attributes.get(name, default)

    def walk(self) -> list[TemplateNode]:
        """All nodes of the subtree in document order, self included."""
        nodes: list[TemplateNode] = []
        stack = [self]
        while stack:
            node = stack.pop()
            nodes.append(node)
            stack.extend(reversed(node.children))
        return nodes

    def canonical(self) -> dict[str, object]:
        """Content of the subtree without source spans."""
        data: dict[str, object] = {"tag": self.tag}
        if self.attributes:
            data["attributes"] = dict(sorted(self.attributes.items()))
        if self.text is not None:
            data["text"] = self.text
        if self.children:
            data["children"] = [child.canonical() for child in self.children]
        return data


TemplateNode.model_rebuild()


class IslandKind(StrEnum):
    """What mounts into an island placeholder."""

    TEMPLATE = "template"  # DSL subtree rendered by the template runtime
    COMPONENT = "component"  # resident component from the component registry


class Island(BaseModel):
    """
    An independently hydrated subtree.

    Attributes:
        id: Content-derived id, unique within the compiled template
        component: Tag name of the island root
        kind: Template subtree or resident component
        props: Attribute map of the island root
        placeholder: Placeholder markup emitted by the server render
        node: The island subtree
        bindings: Event bindings declared inside the island
    """

    id: str
    component: str
    kind: IslandKind
    props: dict[str, str] = Field(default_factory=dict)
    placeholder: str
    node: TemplateNode
    bindings: list[EventBinding] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def binding(self, binding_id: str) -> EventBinding | None:
        for binding in self.bindings:
            if binding.id == binding_id:
                return binding
        return None


class CompilationStats(BaseModel):
    """Counters collected while compiling."""

    node_count: int = 0
    max_depth: int = 0
    component_count: int = 0
    markup_bytes: int = 0

    model_config = ConfigDict(frozen=True)


class CompiledTemplate(BaseModel):
    """The compiled artifact: AST, islands, declared variables."""

    ast: TemplateNode
    islands: list[Island] = Field(default_factory=list)
    variables: list[VariableSpec] = Field(default_factory=list)
    initializers: list[ActionStep] = Field(
        default_factory=list,
        description="Steps run once per template instance before the first render",
    )
    stats: CompilationStats = Field(default_factory=CompilationStats)

    model_config = ConfigDict(frozen=True)

    def island(self, island_id: str) -> Island | None:
        for island in self.islands:
            if island.id == island_id:
                return island
        return None

    def island_configs(self) -> dict[str, Island]:
        return {island.id: island for island in self.islands}
