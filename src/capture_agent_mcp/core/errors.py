from __future__ import annotations


class CaptureAgentError(Exception):
    """
    Base class for every failure raised by the capture agent.
    """


class DeviceOpenError(CaptureAgentError):
    """
    The capture device could not be opened. Fatal, the session never starts.
    """


class FilterCompileError(CaptureAgentError):
    """
    A filter expression failed to compile or install.

    Recoverable: the previously installed filter stays in place.
    """


class DispatchError(CaptureAgentError):
    """
    The blocking dispatch call failed for a reason other than a break request.
    Fatal, the capture loop exits.
    """


class PersistenceError(CaptureAgentError):
    """
    Writing a session or anomaly file failed. The previous file is untouched.
    """


class OutOfOrderTimestampError(CaptureAgentError):
    """
    A packet arrived with a second index below the currently open bucket.

    Packets must be recorded in non decreasing timestamp order.
    """

    def __init__(self, second: int, open_second: int):
        super().__init__(f"packet second {second} is older than open second {open_second}")
        self.second = second
        self.open_second = open_second
