# tests/unit/test_confirmation_codes.py

import re

from src.domain.confirmation_codes import (
    CODE_ALPHABET,
    generate_confirmation_code,
    random_code,
    time_derived_code,
)


CODE_RE = re.compile(r"^TULL-[ABCDEFGHJKLMNPQRSTUVWXYZ23456789]{6}$")


def test_random_code_shape():
    for _ in range(50):
        assert CODE_RE.match(random_code())


def test_alphabet_has_no_ambiguous_symbols():
    assert len(CODE_ALPHABET) == 32
    for symbol in "01IO":
        assert symbol not in CODE_ALPHABET


def test_first_free_code_is_used():
    taken = {"TULL-AAAAAA"}
    candidates = iter(["AAAAAA", "BBBBBB"])

    code = generate_confirmation_code(
        taken.__contains__,
        generator=lambda prefix: prefix + next(candidates),
    )

    assert code == "TULL-BBBBBB"


def test_falls_back_to_time_code_after_max_attempts():
    calls = []

    def always_taken(code):
        calls.append(code)
        return True

    code = generate_confirmation_code(always_taken, max_attempts=10)

    assert len(calls) == 10
    assert code.startswith("TULL-")
    assert len(code) == len("TULL-") + 6


def test_time_derived_code_uses_base36_milliseconds():
    # 1000 ms is "RS" in base 36.
    assert time_derived_code(now=36**3) == "TULL-RS000"
    # Only the last six digits are kept.
    assert time_derived_code(now=36**5) == "TULL-S00000"
    assert time_derived_code(prefix="X-", now=1.0) == "X-RS"
