"""
Tests for proposal number and verification code generation.
"""

from datetime import datetime

from proposal_engine.core.tokens import (
    MIN_VERIFICATION_CODE_LENGTH,
    VERIFICATION_ALPHABET,
    generate_proposal_number,
    generate_verification_code,
    verification_codes_match,
)


class TestVerificationCode:

    def test_default_length_from_settings(self):
        code = generate_verification_code()
        assert len(code) == 10
        assert all(char in VERIFICATION_ALPHABET for char in code)

    def test_custom_length(self):
        assert len(generate_verification_code(16)) == 16

    def test_never_shorter_than_minimum(self):
        assert len(generate_verification_code(4)) == MIN_VERIFICATION_CODE_LENGTH

    def test_codes_are_not_repeated(self):
        codes = {generate_verification_code() for _ in range(50)}
        assert len(codes) == 50


class TestVerificationCodesMatch:

    def test_exact_match(self):
        assert verification_codes_match("ABCD1234EF", "ABCD1234EF")

    def test_case_and_whitespace_insensitive(self):
        assert verification_codes_match("ABCD1234EF", " abcd1234ef ")

    def test_mismatch(self):
        assert not verification_codes_match("ABCD1234EF", "ABCD1234EG")


class TestProposalNumber:

    def test_format(self):
        number = generate_proposal_number(datetime(2026, 3, 2, 9, 0))

        assert number.startswith("PROP-20260302-")
        assert len(number.split("-")[2]) == 6
