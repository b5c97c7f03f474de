"""Access code generation.

Shape: PREFIX-XXXX-XXXX-XXXX, twelve symbols from a 32-character
alphabet with the look-alikes removed (no 0/O, no 1/I), so a code read
off a receipt can be typed back without ambiguity.

Symbols come from `secrets`, the OS CSPRNG.  A guessable code is free
exam access, so `random` is not an option here.  12 symbols over 32
characters is 60 bits of entropy per code.
"""

from __future__ import annotations

import re
import secrets

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GROUPS = 3
GROUP_SIZE = 4

_CODE_RE = re.compile(
    rf"^[A-Z0-9]+(?:-[{ALPHABET}]{{{GROUP_SIZE}}}){{{GROUPS}}}$"
)


def generate_code(prefix: str = "ACE") -> str:
    symbols = "".join(secrets.choice(ALPHABET) for _ in range(GROUPS * GROUP_SIZE))
    groups = [
        symbols[i : i + GROUP_SIZE] for i in range(0, len(symbols), GROUP_SIZE)
    ]
    return "-".join([prefix.upper(), *groups])


def is_well_formed(code: str) -> bool:
    """Cheap shape check, used to reject garbage before touching the store."""
    return bool(_CODE_RE.match(code.strip().upper()))
