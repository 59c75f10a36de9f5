"""
Tests for core data models: TestParams, Cipher, Problem and the Outcome union.
"""
import pytest
from pydantic import TypeAdapter, ValidationError

from cs230.models import (
    ALPHABET,
    Cipher,
    ClientCheckFailure,
    ClientConnection,
    ClientProtocolFailure,
    ClientSuccess,
    ConnectionIOFailure,
    InternalTaskFailure,
    Outcome,
    OutcomeKind,
    Problem,
    ServerFatal,
    TestParams,
    format_address,
)

REVERSED = ALPHABET[::-1]


class TestTestParams:
    def test_defaults(self):
        params = TestParams(message_count=3, max_message_len=10)
        assert params.stop_at_first is True
        assert params.expected_identity is None

    def test_frozen(self):
        params = TestParams(message_count=3, max_message_len=10)
        with pytest.raises(ValidationError):
            params.message_count = 4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"message_count": -1, "max_message_len": 10},
            {"message_count": 1, "max_message_len": 0},
            {"message_count": 1, "max_message_len": 10, "expected_identity": ""},
            {"message_count": 1, "max_message_len": 10, "expected_identity": "a b"},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            TestParams(**kwargs)

    def test_zero_messages_allowed(self):
        assert TestParams(message_count=0, max_message_len=1).message_count == 0


class TestCipher:
    def test_apply(self):
        cipher = Cipher.from_string(REVERSED)
        assert cipher.apply("abcz") == "zyxa"
        assert cipher.as_string() == REVERSED

    def test_identity_mapping_is_valid(self):
        assert Cipher.from_string(ALPHABET).apply("hello") == "hello"

    @pytest.mark.parametrize("mapping", ["abc", "a" * 26, ALPHABET[:-1] + "A"])
    def test_rejects_non_permutation(self, mapping):
        with pytest.raises(ValueError):
            Cipher.from_string(mapping)


class TestProblem:
    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            Problem(cipher=Cipher.from_string(ALPHABET), plaintext="ab", expected="a")


class TestOutcome:
    def test_rendering(self):
        assert str(ClientConnection(address="127.0.0.1:4000")) == "Client connected: 127.0.0.1:4000"
        assert str(ClientSuccess(address="127.0.0.1:4000")) == "Client success: 127.0.0.1:4000"
        assert str(ClientProtocolFailure(text="bad")) == "Client error: bad"
        assert str(ConnectionIOFailure(text="reset")) == "IOError: reset"
        assert str(InternalTaskFailure(text="boom")) == "Join error: boom"
        assert str(ServerFatal(text="accept")) == "Server connection error: accept"

    def test_check_failure_carries_diagnostics(self):
        outcome = ClientCheckFailure(text="wrong", cipher=REVERSED, plaintext="ab", expected="zy")
        assert str(outcome) == "Client failure: wrong"
        assert "expected: zy" in outcome.diagnostics()
        assert outcome.is_error and not outcome.is_success

    def test_success_flags(self):
        assert ClientSuccess(address="h:1").is_success
        assert not ClientConnection(address="h:1").is_error

    def test_discriminated_union(self):
        adapter = TypeAdapter(Outcome)
        outcome = adapter.validate_python({"kind": "client_protocol_error", "text": "nope"})
        assert isinstance(outcome, ClientProtocolFailure)
        assert outcome.kind == OutcomeKind.CLIENT_PROTOCOL_ERROR

    def test_every_kind_has_a_variant(self):
        adapter = TypeAdapter(Outcome)
        payloads = {
            OutcomeKind.CLIENT_CONNECTION: {"address": "h:1"},
            OutcomeKind.CLIENT_SUCCESS: {"address": "h:1"},
            OutcomeKind.CLIENT_PROTOCOL_ERROR: {"text": "t"},
            OutcomeKind.CLIENT_FAILURE_ERROR: {
                "text": "t", "cipher": ALPHABET, "plaintext": "a", "expected": "a",
            },
            OutcomeKind.IO_FAILURE: {"text": "t"},
            OutcomeKind.INTERNAL_TASK_FAILURE: {"text": "t"},
            OutcomeKind.SERVER_FATAL_ERROR: {"text": "t"},
        }
        assert set(payloads) == set(OutcomeKind)
        for kind, payload in payloads.items():
            assert adapter.validate_python({"kind": kind.value, **payload}).kind == kind


def test_format_address():
    assert format_address(("127.0.0.1", 5000)) == "127.0.0.1:5000"
    assert format_address(("::1", 5000, 0, 0)) == "[::1]:5000"
