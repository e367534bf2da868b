import enum


class NodeKind(str, enum.Enum):
    """
    Enum representing the kind of a node in a flow graph.
    """

    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"


class FlowRunStatus(str, enum.Enum):
    """
    Enum representing the status of a flow run.
    A run is RUNNING until it reaches one of the two terminal states.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, enum.Enum):
    """
    Enum representing the severity of a flow run log entry.
    """

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DeviceHistoryEvent(str, enum.Enum):
    """
    Enum representing the kind of device history entry.
    """

    PRESENCE = "presence"
    DESCRIPTION = "description"
    STATE = "state"
    EVENT = "event"


# Edge labels that select a branch when leaving a condition node
TRUE_BRANCH_LABELS = frozenset({"true", "yes"})
FALSE_BRANCH_LABELS = frozenset({"false", "no"})
