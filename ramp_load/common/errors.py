"""
Error codes and exceptions for the load engine.

Per-request failures are never raised past the virtual user that observed
them; only configuration problems abort a run.
"""


class ErrorCode:
    """Stable error codes used to tag log lines."""
    CONFIG_INVALID = "RL-CFG-001"
    CONFIG_MISSING_CREDENTIALS = "RL-CFG-002"
    CONFIG_BAD_THRESHOLD = "RL-CFG-003"
    TRANSPORT_FAILURE = "RL-NET-001"
    VU_INTERRUPTED = "RL-RUN-001"
    RUN_ABORTED = "RL-RUN-002"
    NO_REQUESTS = "RL-RUN-003"
    THRESHOLD_BREACHED = "RL-THR-001"


class LoadTestError(Exception):
    """Base exception for the load engine."""
    pass


class ConfigurationError(LoadTestError):
    """
    Raised when a plan cannot be used to start a run.

    Attributes:
        code: One of the ``ErrorCode.CONFIG_*`` values.
    """

    def __init__(self, message: str, code: str = ErrorCode.CONFIG_INVALID):
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"[{self.code}] {super().__str__()}"
