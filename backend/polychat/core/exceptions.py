"""
Error taxonomy shared by the provider, streaming and storage layers.
"""
from typing import Optional


class PolychatError(Exception):
    """Base class for all polychat errors."""


class ConfigError(PolychatError):
    """Missing or invalid configuration detected before any request is made."""


class TransportError(PolychatError):
    """
    Non-2xx response or network failure while talking to a provider.

    status_code is None when the failure happened below HTTP
    (connection reset, read error mid-stream).
    """

    def __init__(self, status_code: Optional[int], body: str = ""):
        self.status_code = status_code
        self.body = body
        if status_code is None:
            message = f"AI transport error: {body}"
        else:
            message = f"AI API Error: {status_code} - {body}"
        super().__init__(message)


class ProtocolError(PolychatError):
    """A single streamed line could not be decoded. Recovered per line."""


class DataError(PolychatError):
    """Referenced conversation or message does not exist, or is inconsistent."""
