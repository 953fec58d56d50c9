"""
roscomm – RouterOS API client: length-prefixed word framing, sentence
assembly, MD5 challenge login and an async request/response wrapper.
"""

from .client import RouterAPIClient
from .comm import Comm, ConnectionState, Credentials, LoginState, TagCounter
from .errors import (
    APIError,
    AuthenticationError,
    FramingError,
    InternalConsistencyFault,
    LoginFailed,
    NotLoggedIn,
    RosError,
    TransportError,
    WordTooLong,
)
from .sentence import ResultType, Sentence
from .transport import AsyncioTransport, SocketState, Transport

__version__ = "0.3.0"
