from __future__ import annotations

import secrets
import string

DIGITS = string.digits
LOWER_CASE_ALPHABETS = string.ascii_lowercase
UPPER_CASE_ALPHABETS = string.ascii_uppercase


def generate_otp(
    length: int = 6,
    *,
    lower_case_alphabets: bool = False,
    upper_case_alphabets: bool = False,
) -> str:
    """Random one-time code. Digits are always included; special characters never are."""
    alphabet = DIGITS
    if lower_case_alphabets:
        alphabet += LOWER_CASE_ALPHABETS
    if upper_case_alphabets:
        alphabet += UPPER_CASE_ALPHABETS
    return "".join(secrets.choice(alphabet) for _ in range(max(int(length), 0)))
