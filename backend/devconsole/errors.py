"""Error taxonomy shared by the session controller and the sandbox"""


class DevConsoleError(Exception):
    """Base class for all Dev-Console errors"""


class ProviderError(DevConsoleError):
    """Completion provider unreachable or produced a malformed stream"""


class ValidationError(DevConsoleError):
    """
    Request rejected before any I/O: bad path, non-SELECT query, missing
    argument, unknown asset or action.

    The message is user-facing and is fed back to the model so it can
    correct itself.
    """


class ExecutionError(DevConsoleError):
    """I/O failure, backup failure, or the remote sandbox could not be reached"""


class GateError(DevConsoleError):
    """Confirm or cancel issued while nothing is pending"""
