"""Legacy password pre-transform.

Existing vault files were written with a key derived from a shifted form of
the master password, so ``derive_key`` has to apply the same shift to open
them. The shift is keyless and public: it adds nothing to the strength of
the KDF.

For the character at index ``i``:

    out = chr((ord(c) + FIBONACCI[NUMERIC_KEY[i % 20] - 1]) % 128)

The ``% 128`` folds every code point into 7 bits, so the shift is only
invertible for ASCII input. Non-ASCII passwords still derive a stable key,
but ``unshift_password`` cannot recover them.
"""

from typing import List

NUMERIC_KEY: List[int] = [14, 7, 3, 16, 11, 19, 1, 13, 6, 9, 17, 5, 12, 8, 4, 20, 15, 10, 18, 2]

FIBONACCI: List[int] = [
    0, 1, 1, 2, 3, 5, 8, 13, 21, 34,
    55, 89, 144, 233, 377, 610, 987, 1597, 2584, 4181,
]


def _shift_for(index: int) -> int:
    return FIBONACCI[NUMERIC_KEY[index % len(NUMERIC_KEY)] - 1]


def shift_password(password: str) -> str:
    """Apply the legacy shift to ``password``."""
    return "".join(
        chr((ord(c) + _shift_for(i)) % 128) for i, c in enumerate(password)
    )


def unshift_password(shifted: str) -> str:
    """Invert ``shift_password`` (exact for ASCII input only)."""
    return "".join(
        chr((ord(c) - _shift_for(i)) % 128) for i, c in enumerate(shifted)
    )
