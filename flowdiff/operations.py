"""
Diff operations for flow documents.

Each operation is one atomic edit intent. Operations are tagged by ``type``;
``addNode`` and ``addEdge`` come in two explicit forms each:

- simplified: ids/names only, expanded by the engine from the catalog
- full: a complete node or edge object used as-is

Bulk operations (addNodes, removeNodes, addEdges, removeEdges) are
conveniences. ``expand_operations`` turns them into the equivalent singular
operations, with explicit auto-layout positions, before anything is validated.
"""

import math
from typing import Annotated, Any, ClassVar, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, Discriminator, Field, Tag, TypeAdapter

from .schemas import FlowEdge, FlowNode, Position

DEFAULT_SPACING = 350
DEFAULT_ORIGIN = {"x": 100, "y": 100}


class BaseOperation(BaseModel):
    tag: ClassVar[str] = ""
    description: Optional[str] = None  # human-readable explanation


# --- Node operations ---

class AddSimpleNode(BaseOperation):
    tag: ClassVar[str] = "addNode"
    type: Literal["addNode"] = "addNode"
    nodeId: str
    componentType: str = Field(validation_alias=AliasChoices("componentType", "component"))
    params: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Position] = None


class AddFullNode(BaseOperation):
    tag: ClassVar[str] = "addNode:full"
    type: Literal["addNode"] = "addNode"
    node: FlowNode
    position: Optional[Position] = None  # overrides node.position


class RemoveNode(BaseOperation):
    tag: ClassVar[str] = "removeNode"
    type: Literal["removeNode"] = "removeNode"
    nodeId: str
    removeConnections: bool = True


class UpdateNode(BaseOperation):
    """``updates`` may carry ``parameters`` (or ``template``), ``position`` and other node fields."""

    tag: ClassVar[str] = "updateNode"
    type: Literal["updateNode"] = "updateNode"
    nodeId: str
    updates: Dict[str, Any] = Field(default_factory=dict)
    merge: bool = True


class MoveNode(BaseOperation):
    tag: ClassVar[str] = "moveNode"
    type: Literal["moveNode"] = "moveNode"
    nodeId: str
    position: Position


# --- Edge operations ---

class AddSimpleEdge(BaseOperation):
    tag: ClassVar[str] = "addEdge"
    type: Literal["addEdge"] = "addEdge"
    source: str
    target: str
    targetParam: Optional[str] = None
    sourceOutput: Optional[str] = Field(default=None, validation_alias=AliasChoices("sourceOutput", "sourceHandle"))


class AddFullEdge(BaseOperation):
    tag: ClassVar[str] = "addEdge:full"
    type: Literal["addEdge"] = "addEdge"
    edge: FlowEdge


class RemoveEdge(BaseOperation):
    tag: ClassVar[str] = "removeEdge"
    type: Literal["removeEdge"] = "removeEdge"
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


# --- Document operations ---

class MetadataUpdates(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdateMetadata(BaseOperation):
    tag: ClassVar[str] = "updateMetadata"
    type: Literal["updateMetadata"] = "updateMetadata"
    updates: MetadataUpdates


class AddNote(BaseOperation):
    tag: ClassVar[str] = "addNote"
    type: Literal["addNote"] = "addNote"
    markdown: str
    position: Position = Field(default_factory=lambda: Position(**DEFAULT_ORIGIN))
    backgroundColor: str = "neutral"
    noteId: Optional[str] = None


# --- Bulk operations ---

class NodeSpec(BaseModel):
    nodeId: str
    componentType: str = Field(validation_alias=AliasChoices("componentType", "component"))
    params: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Position] = None


class EdgeSpec(BaseModel):
    source: str
    target: str
    targetParam: Optional[str] = None
    sourceOutput: Optional[str] = Field(default=None, validation_alias=AliasChoices("sourceOutput", "sourceHandle"))


class EdgeRef(BaseModel):
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


class AddNodes(BaseOperation):
    tag: ClassVar[str] = "addNodes"
    type: Literal["addNodes"] = "addNodes"
    nodes: List[NodeSpec]
    autoLayout: Literal["horizontal", "vertical", "grid"] = "horizontal"
    spacing: float = DEFAULT_SPACING
    origin: Position = Field(default_factory=lambda: Position(**DEFAULT_ORIGIN))


class RemoveNodes(BaseOperation):
    tag: ClassVar[str] = "removeNodes"
    type: Literal["removeNodes"] = "removeNodes"
    nodeIds: List[str]
    removeConnections: bool = True


class AddEdges(BaseOperation):
    tag: ClassVar[str] = "addEdges"
    type: Literal["addEdges"] = "addEdges"
    edges: List[EdgeSpec]


class RemoveEdges(BaseOperation):
    tag: ClassVar[str] = "removeEdges"
    type: Literal["removeEdges"] = "removeEdges"
    edges: List[EdgeRef]


def _operation_tag(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        op_type = value.get("type")
        if op_type == "addNode" and "node" in value:
            return "addNode:full"
        if op_type == "addEdge" and "edge" in value:
            return "addEdge:full"
        return op_type
    return getattr(value, "tag", None)


DiffOperation = Annotated[
    Union[
        Annotated[AddSimpleNode, Tag("addNode")],
        Annotated[AddFullNode, Tag("addNode:full")],
        Annotated[RemoveNode, Tag("removeNode")],
        Annotated[UpdateNode, Tag("updateNode")],
        Annotated[MoveNode, Tag("moveNode")],
        Annotated[AddSimpleEdge, Tag("addEdge")],
        Annotated[AddFullEdge, Tag("addEdge:full")],
        Annotated[RemoveEdge, Tag("removeEdge")],
        Annotated[UpdateMetadata, Tag("updateMetadata")],
        Annotated[AddNote, Tag("addNote")],
        Annotated[AddNodes, Tag("addNodes")],
        Annotated[RemoveNodes, Tag("removeNodes")],
        Annotated[AddEdges, Tag("addEdges")],
        Annotated[RemoveEdges, Tag("removeEdges")],
    ],
    Discriminator(_operation_tag),
]

_operation_list = TypeAdapter(List[DiffOperation])


def parse_operations(raw: Iterable[Any]) -> List[BaseOperation]:
    """Parse wire dicts (or already-built operations) into operation models.

    Raises ``pydantic.ValidationError`` on malformed input.
    """
    return _operation_list.validate_python(list(raw))


# --- Constructors ---

def add_node(node_id: str, component_type: str, params: Optional[Dict[str, Any]] = None,
             position: Optional[Dict[str, float]] = None) -> AddSimpleNode:
    return AddSimpleNode(
        nodeId=node_id,
        componentType=component_type,
        params=params or {},
        position=Position(**position) if position else None,
    )


def add_full_node(node: Union[FlowNode, Dict[str, Any]], position: Optional[Dict[str, float]] = None) -> AddFullNode:
    return AddFullNode(
        node=FlowNode.model_validate(node),
        position=Position(**position) if position else None,
    )


def remove_node(node_id: str, remove_connections: bool = True) -> RemoveNode:
    return RemoveNode(nodeId=node_id, removeConnections=remove_connections)


def update_node(node_id: str, parameters: Optional[Dict[str, Any]] = None, merge: bool = True, **updates) -> UpdateNode:
    if parameters is not None:
        updates["parameters"] = parameters
    return UpdateNode(nodeId=node_id, updates=updates, merge=merge)


def move_node(node_id: str, x: float, y: float) -> MoveNode:
    return MoveNode(nodeId=node_id, position=Position(x=x, y=y))


def add_edge(source: str, target: str, target_param: Optional[str] = None,
             source_output: Optional[str] = None) -> AddSimpleEdge:
    return AddSimpleEdge(source=source, target=target, targetParam=target_param, sourceOutput=source_output)


def add_full_edge(edge: Union[FlowEdge, Dict[str, Any]]) -> AddFullEdge:
    return AddFullEdge(edge=FlowEdge.model_validate(edge))


def remove_edge(source: str, target: str, source_handle: Optional[str] = None,
                target_handle: Optional[str] = None) -> RemoveEdge:
    return RemoveEdge(source=source, target=target, sourceHandle=source_handle, targetHandle=target_handle)


def update_metadata(**updates) -> UpdateMetadata:
    return UpdateMetadata(updates=MetadataUpdates(**updates))


def add_note(markdown: str, position: Optional[Dict[str, float]] = None, background_color: str = "neutral",
             note_id: Optional[str] = None) -> AddNote:
    return AddNote(
        markdown=markdown,
        position=Position(**(position or DEFAULT_ORIGIN)),
        backgroundColor=background_color,
        noteId=note_id,
    )


# --- Bulk expansion ---

def layout_positions(count: int, mode: str = "horizontal", spacing: float = DEFAULT_SPACING,
                     origin: Optional[Position] = None) -> List[Position]:
    """Evenly spaced positions for ``count`` nodes, row-major for ``grid``."""
    origin = origin or Position(**DEFAULT_ORIGIN)
    columns = max(1, math.ceil(math.sqrt(count))) if mode == "grid" else count
    positions = []
    for i in range(count):
        if mode == "vertical":
            positions.append(Position(x=origin.x, y=origin.y + i * spacing))
        elif mode == "grid":
            positions.append(Position(x=origin.x + (i % columns) * spacing, y=origin.y + (i // columns) * spacing))
        else:
            positions.append(Position(x=origin.x + i * spacing, y=origin.y))
    return positions


def _expand_one(op: BaseOperation) -> List[BaseOperation]:
    if isinstance(op, AddNodes):
        positions = layout_positions(len(op.nodes), op.autoLayout, op.spacing, op.origin)
        return [
            AddSimpleNode(
                nodeId=spec.nodeId,
                componentType=spec.componentType,
                params=spec.params,
                position=spec.position or positions[i],
                description=op.description,
            )
            for i, spec in enumerate(op.nodes)
        ]
    if isinstance(op, RemoveNodes):
        return [
            RemoveNode(nodeId=node_id, removeConnections=op.removeConnections, description=op.description)
            for node_id in op.nodeIds
        ]
    if isinstance(op, AddEdges):
        return [
            AddSimpleEdge(
                source=spec.source,
                target=spec.target,
                targetParam=spec.targetParam,
                sourceOutput=spec.sourceOutput,
                description=op.description,
            )
            for spec in op.edges
        ]
    if isinstance(op, RemoveEdges):
        return [
            RemoveEdge(
                source=ref.source,
                target=ref.target,
                sourceHandle=ref.sourceHandle,
                targetHandle=ref.targetHandle,
                description=op.description,
            )
            for ref in op.edges
        ]
    return [op]


def expand_operations(operations: List[BaseOperation]) -> List[Tuple[int, BaseOperation]]:
    """Expand bulk operations. Each singular operation keeps its input index."""
    expanded = []
    for index, op in enumerate(operations):
        for single in _expand_one(op):
            expanded.append((index, single))
    return expanded
