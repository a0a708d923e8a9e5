"""Admission and control-precondition errors raised by the broadcast queue."""


class BroadcastError(Exception):
    """Base exception for broadcast queue control errors."""


class AlreadyRunningError(BroadcastError):
    def __init__(self, message: str = "A broadcast is already running. Use the queue controls to manage it."):
        super().__init__(message)


class NotRunningError(BroadcastError):
    def __init__(self, message: str = "No broadcast is currently running."):
        super().__init__(message)


class NotPausedError(BroadcastError):
    def __init__(self, message: str = "The broadcast is not paused."):
        super().__init__(message)
