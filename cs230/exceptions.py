"""
Custom Exception Hierarchy for the Conformance Tester

Provides structured exceptions so failures can be classified into outcomes.
All custom exceptions inherit from TesterError base class.
"""
from typing import Optional


class TesterError(Exception):
    """
    Base exception for all tester-specific errors.

    All custom exceptions should inherit from this class to allow
    catching all tester errors with a single except clause.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors

class ConfigurationError(TesterError):
    """
    Invalid configuration or test parameters.

    Raised before a run starts; never produced by a live connection.
    """
    pass


# Protocol Errors (connection-scoped, blame the client)

class ProtocolError(TesterError):
    """
    Client misbehaved on the wire.

    Base class for all connection-scoped client faults. Terminates only
    the offending connection.
    """
    pass


class ClientProtocolError(ProtocolError):
    """Malformed line, wrong message for the current state, or identity mismatch."""
    pass


class ClientFailureError(ProtocolError):
    """
    Well-formed reply that failed the correctness check.

    Carries the full problem so the failure can be reproduced by hand.
    """
    def __init__(self, message: str, cipher: str, plaintext: str, expected: str):
        super().__init__(
            message,
            {"cipher": cipher, "plaintext": plaintext, "expected": expected},
        )
        self.cipher = cipher
        self.plaintext = plaintext
        self.expected = expected


# Transport Errors (connection-scoped, blame the link)

class TransportError(TesterError):
    """
    Network transport failures on a single connection.

    Raw OSErrors from the stream are reported the same way.
    """
    pass


class ReceiveTimeoutError(TransportError):
    """Timeout waiting for a client line (only when a read timeout is configured)."""
    pass


# Fatal Errors (terminate the whole run)

class ServerFatalError(TesterError):
    """
    Listener bind/accept failure or lost result consumer.

    All in-flight connection handlers are cancelled when this is raised.
    """
    pass


class ChannelClosedError(ServerFatalError):
    """The result consumer closed its end; outcomes can no longer be reported."""
    pass
