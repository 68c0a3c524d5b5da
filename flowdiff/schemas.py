from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .catalog import PortDef


class Position(BaseModel):
    x: float = 0
    y: float = 0


class FlowNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    componentType: str
    position: Position = Field(default_factory=Position)
    parameters: Dict[str, Any] = Field(default_factory=dict)  # field values, keyed by catalog parameter name
    outputPorts: List[PortDef] = Field(default_factory=list)


class FlowEdge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


class NoteElement(BaseModel):
    """Documentation sticky note. Not executable and never an edge endpoint."""

    id: str
    markdown: str
    position: Position = Field(default_factory=Position)
    backgroundColor: str = "neutral"


class FlowDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: str = ""
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    notes: List[NoteElement] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    severity: Severity
    message: str
    nodeId: Optional[str] = None
    edgeId: Optional[str] = None
    field: Optional[str] = None
    suggestedFix: Optional[str] = None

    def __str__(self) -> str:
        where = self.nodeId or self.edgeId
        msg = f"{self.severity.value}: {self.message}"
        if where:
            msg += f" (in {where})"
        return msg


class ValidationSummary(BaseModel):
    totalNodes: int = 0
    totalEdges: int = 0
    errors: int = 0
    warnings: int = 0


class ValidationResult(BaseModel):
    valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]


class DiffResult(BaseModel):
    success: bool = True
    flow: Optional[Dict[str, Any]] = None
    operationsApplied: int = 0
    applied: List[int] = Field(default_factory=list)  # indices into the caller's operation list
    failed: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    issues: List[ValidationIssue] = Field(default_factory=list)


# --- API request bodies ---

class ValidateRequest(BaseModel):
    flow: Dict[str, Any]
    catalog: Optional[Dict[str, Any]] = None  # overrides the service catalog


class DiffRequest(BaseModel):
    flow: Dict[str, Any]
    operations: List[Dict[str, Any]]
    validateAfter: bool = True
    continueOnError: bool = False
    catalog: Optional[Dict[str, Any]] = None


class FlowDiffRequest(BaseModel):
    operations: List[Dict[str, Any]]
    validateAfter: bool = True
    continueOnError: bool = False
    description: Optional[str] = None
    actor: Optional[str] = None


class NoteRequest(BaseModel):
    markdown: str
    position: Optional[Position] = None
    backgroundColor: str = "neutral"
    noteId: Optional[str] = None
