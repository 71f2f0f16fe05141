"""
Error taxonomy for engine control operations.

Every error raised by the transport, the resource client and the log
decoder derives from EngineControlError, itself a docker SDK
DockerException, so code already guarding docker calls keeps working.

  - TransportError: engine unreachable (connection refused, DNS, timeout)
  - EngineError: non-2xx response, carrying status and the engine's message
  - DecodeError: 2xx response whose body has an unexpected shape
  - ProtocolError: unrecognized log frame header
"""

from typing import Optional

from docker.errors import DockerException


class EngineControlError(DockerException):
    """Base error for engine control operations."""
    pass


class TransportError(EngineControlError):
    """The engine endpoint could not be reached."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EngineError(EngineControlError):
    """The engine answered with a non-2xx status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"EngineError(status={self.status}, message={self.message!r})"


class DecodeError(EngineControlError):
    """A successful response body did not have the expected shape."""
    pass


class ProtocolError(EngineControlError):
    """A log stream frame header could not be understood."""
    pass
