"""
Problem Generator - builds randomized substitution challenges.

Each connection owns one generator seeded from OS entropy, so concurrent
connections never share (or contend on) a random source.
"""
import random
import secrets
from typing import Optional

from cs230.models import ALPHABET, Cipher, Problem

_SEED_BITS = 256


class ProblemGenerator:
    """
    Produces Problems for a single connection.

    Plaintext length is drawn uniformly from [1, max_message_len). When
    max_message_len is 1 the range is empty and the length is fixed at 1.
    """

    def __init__(self, max_message_len: int, seed: Optional[int] = None):
        if max_message_len < 1:
            raise ValueError(f"max_message_len must be >= 1, got {max_message_len}")
        self.max_message_len = max_message_len
        self._rng = random.Random(secrets.randbits(_SEED_BITS) if seed is None else seed)

    def new_cipher(self) -> Cipher:
        """Uniformly random permutation of the alphabet."""
        letters = list(ALPHABET)
        self._rng.shuffle(letters)
        return Cipher(tuple(letters))

    def _draw_length(self) -> int:
        return self._rng.randrange(1, max(self.max_message_len, 2))

    def generate(self) -> Problem:
        cipher = self.new_cipher()
        indices = [self._rng.randrange(len(ALPHABET)) for _ in range(self._draw_length())]

        plaintext = "".join(ALPHABET[i] for i in indices)
        expected = "".join(cipher[i] for i in indices)
        return Problem(cipher=cipher, plaintext=plaintext, expected=expected)
