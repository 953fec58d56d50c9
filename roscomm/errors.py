"""
Exception hierarchy for the RouterOS API client.

  RosError
    TransportError            – socket level failures
    FramingError              – malformed length prefix / word on the wire
      WordTooLong             – length does not fit the 4-byte prefix
      IncompleteLength        – prefix split across reads (internal, recoverable)
    AuthenticationError
      LoginFailed             – malformed challenge or rejected credentials
    InternalConsistencyFault  – driver bug, never a network condition
    APIError                  – router answered !trap / !fatal
  NotLoggedIn (ConnectionError)
"""


class RosError(Exception):
    """Base class of every error raised by roscomm."""


class TransportError(RosError):
    pass


class FramingError(RosError):
    pass


class WordTooLong(FramingError):
    def __init__(self, length: int):
        super().__init__(f"Word too long: {length} bytes")
        self.length = length


class IncompleteLength(FramingError):
    """Raised by decode_length when the buffer ends inside a length prefix."""

    def __init__(self, missing: int):
        super().__init__(f"Incomplete word length: {missing} more byte(s) needed")
        self.missing = missing


class AuthenticationError(RosError):
    pass


class LoginFailed(AuthenticationError):
    def __init__(self, message: str, remote_message: str = ""):
        super().__init__(message)
        self.remote_message = remote_message


class InternalConsistencyFault(RosError):
    pass


class APIError(RosError):
    """Raised when RouterOS returns !trap or !fatal."""
    def __init__(self, message: str, category: str = ""):
        super().__init__(message)
        self.category = category


class NotLoggedIn(ConnectionError):
    pass
