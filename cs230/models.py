"""
Core data models
"""
import string
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALPHABET = string.ascii_lowercase
PROTOCOL_TAG = "cs230"


def format_address(peer: Tuple) -> str:
    """Render a socket address tuple as host:port."""
    host, port = peer[0], peer[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class TestParams(BaseModel):
    """Parameters of one tester run, shared by every connection it serves"""

    __test__ = False  # not a pytest test class
    model_config = ConfigDict(frozen=True)

    message_count: int = Field(ge=0, description="Problems issued per connection")
    max_message_len: int = Field(
        ge=1, description="Exclusive upper bound on plaintext length (1 means fixed at 1)"
    )
    stop_at_first: bool = Field(
        default=True, description="Serve exactly one connection and return its outcome"
    )
    expected_identity: Optional[str] = Field(
        default=None, description="Identity the client must send in HELLO (None = any)"
    )

    @field_validator("expected_identity")
    @classmethod
    def _identity_is_one_token(cls, value: Optional[str]) -> Optional[str]:
        # HELLO is split on whitespace, so anything else could never match
        if value is not None and (not value or len(value.split()) != 1 or value != value.strip()):
            raise ValueError("expected_identity must be a single non-empty token")
        return value


# Client messages

@dataclass(frozen=True)
class Hello:
    """cs230 HELLO <identity>"""

    identity: str


@dataclass(frozen=True)
class Transform:
    """cs230 <result>"""

    result: str


ClientMessage = Union[Hello, Transform]


# Problems

@dataclass(frozen=True)
class Cipher:
    """Bijective substitution over a..z; letters[i] is the image of ALPHABET[i]."""

    letters: Tuple[str, ...]

    def __post_init__(self):
        if sorted(self.letters) != list(ALPHABET):
            raise ValueError(f"cipher is not a permutation of the alphabet: {''.join(self.letters)!r}")

    @classmethod
    def from_string(cls, mapping: str) -> "Cipher":
        return cls(tuple(mapping))

    def __getitem__(self, index: int) -> str:
        return self.letters[index]

    def as_string(self) -> str:
        return "".join(self.letters)

    def apply(self, text: str) -> str:
        return "".join(self.letters[ALPHABET.index(ch)] for ch in text)


@dataclass(frozen=True)
class Problem:
    """One challenge: the server keeps only `expected` for comparison."""

    cipher: Cipher
    plaintext: str
    expected: str

    def __post_init__(self):
        if len(self.plaintext) != len(self.expected):
            raise ValueError("plaintext and expected must have the same length")


# Outcomes

class OutcomeKind(str, Enum):
    """Classified result of a connection or of the server itself"""

    CLIENT_CONNECTION = "client_connection"
    CLIENT_SUCCESS = "client_success"
    CLIENT_PROTOCOL_ERROR = "client_protocol_error"
    CLIENT_FAILURE_ERROR = "client_failure_error"
    IO_FAILURE = "io_failure"
    INTERNAL_TASK_FAILURE = "internal_task_failure"
    SERVER_FATAL_ERROR = "server_fatal_error"


class _OutcomeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.CLIENT_SUCCESS

    @property
    def is_error(self) -> bool:
        return self.kind not in (OutcomeKind.CLIENT_CONNECTION, OutcomeKind.CLIENT_SUCCESS)


class ClientConnection(_OutcomeBase):
    kind: Literal[OutcomeKind.CLIENT_CONNECTION] = OutcomeKind.CLIENT_CONNECTION
    address: str

    def __str__(self) -> str:
        return f"Client connected: {self.address}"


class ClientSuccess(_OutcomeBase):
    kind: Literal[OutcomeKind.CLIENT_SUCCESS] = OutcomeKind.CLIENT_SUCCESS
    address: str

    def __str__(self) -> str:
        return f"Client success: {self.address}"


class ClientProtocolFailure(_OutcomeBase):
    kind: Literal[OutcomeKind.CLIENT_PROTOCOL_ERROR] = OutcomeKind.CLIENT_PROTOCOL_ERROR
    text: str

    def __str__(self) -> str:
        return f"Client error: {self.text}"


class ClientCheckFailure(_OutcomeBase):
    kind: Literal[OutcomeKind.CLIENT_FAILURE_ERROR] = OutcomeKind.CLIENT_FAILURE_ERROR
    text: str
    cipher: str
    plaintext: str
    expected: str

    def __str__(self) -> str:
        return f"Client failure: {self.text}"

    def diagnostics(self) -> str:
        return f"cipher: {self.cipher}\nplaintext: {self.plaintext}\nexpected: {self.expected}"


class ConnectionIOFailure(_OutcomeBase):
    kind: Literal[OutcomeKind.IO_FAILURE] = OutcomeKind.IO_FAILURE
    text: str

    def __str__(self) -> str:
        return f"IOError: {self.text}"


class InternalTaskFailure(_OutcomeBase):
    kind: Literal[OutcomeKind.INTERNAL_TASK_FAILURE] = OutcomeKind.INTERNAL_TASK_FAILURE
    text: str

    def __str__(self) -> str:
        return f"Join error: {self.text}"


class ServerFatal(_OutcomeBase):
    kind: Literal[OutcomeKind.SERVER_FATAL_ERROR] = OutcomeKind.SERVER_FATAL_ERROR
    text: str

    def __str__(self) -> str:
        return f"Server connection error: {self.text}"


Outcome = Annotated[
    Union[
        ClientConnection,
        ClientSuccess,
        ClientProtocolFailure,
        ClientCheckFailure,
        ConnectionIOFailure,
        InternalTaskFailure,
        ServerFatal,
    ],
    Field(discriminator="kind"),
]
