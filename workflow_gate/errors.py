"""
Exceptions raised inside workflow-gate.

Policy violations are not exceptions: the gate returns them as block
decisions. These types cover infrastructure problems that are caught at
component or process boundaries.
"""


class WorkflowGateError(Exception):
    """Base exception for workflow-gate errors"""
    pass


class ConfigurationError(WorkflowGateError):
    """Configuration is invalid"""
    pass


class StateStoreError(WorkflowGateError):
    """The state document could not be written"""
    pass
