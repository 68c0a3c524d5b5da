from typing import Optional


class FlowDiffError(ValueError):
    """Base class for every error raised while editing a flow."""

    def __init__(self, message: str, suggested_fix: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggested_fix = suggested_fix


class OperationError(FlowDiffError):
    """An operation could not be applied to the current document."""


class UnknownComponentError(OperationError):
    def __init__(self, component_type: str, suggestion: Optional[str] = None):
        fix = f"Did you mean {suggestion}?" if suggestion else "Check the component catalog for valid names"
        super().__init__(f'Unknown component type: "{component_type}"', fix)
        self.component_type = component_type


class NodeNotFoundError(OperationError):
    def __init__(self, node_id: str):
        super().__init__(f'Node "{node_id}" not found', "Check the node ID")
        self.node_id = node_id


class EdgeNotFoundError(OperationError):
    def __init__(self, source: str, target: str):
        super().__init__(
            f'Edge from "{source}" to "{target}" not found',
            "Check the source and target node IDs",
        )
        self.source = source
        self.target = target


class DuplicateNodeError(OperationError):
    def __init__(self, node_id: str):
        super().__init__(f'Node with ID "{node_id}" already exists', "Use a unique node ID")
        self.node_id = node_id


class FlowNotFoundError(FlowDiffError):
    def __init__(self, flow_id: str):
        super().__init__(f"Flow {flow_id} does not exist")
        self.flow_id = flow_id
