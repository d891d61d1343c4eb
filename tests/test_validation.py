"""Tests for sign-in input validation and threat heuristics."""

import pytest

from vipbar.services.errors import ValidationError
from vipbar.services.validation import detect_threats, validate_credentials


class TestValidateCredentials:
    """Tests for validate_credentials."""

    def test_normalizes_email(self):
        assert validate_credentials("  Caja@BarVIP.com ", "barpass2024") == (
            "caja@barvip.com",
            "barpass2024",
        )

    def test_password_is_not_trimmed(self):
        assert validate_credentials("a@b.co", " spaced ")[1] == " spaced "

    @pytest.mark.parametrize(
        "email,password,message",
        [
            (None, "barpass2024", "requeridos"),
            ("a@b.co", "", "requeridos"),
            ("   ", "barpass2024", "vacíos"),
            ("not-an-email", "barpass2024", "Formato"),
            ("a@b", "barpass2024", "Formato"),
            ("a" * 250 + "@b.com", "barpass2024", "largo"),
            ("a@b.co", "12345", "corta"),
            ("a@b.co", "x" * 129, "larga"),
        ],
    )
    def test_rejects_malformed_input(self, email, password, message):
        with pytest.raises(ValidationError, match=message):
            validate_credentials(email, password)

    @pytest.mark.parametrize(
        "password",
        [
            "<script>alert(1)</script>",
            "javascript:alert(1)",
            "x onload=alert(1)",
            "' UNION SELECT * FROM users --",
        ],
    )
    def test_rejects_suspicious_password(self, password):
        with pytest.raises(ValidationError, match="inválida"):
            validate_credentials("a@b.co", password)

    def test_length_bounds_are_inclusive(self):
        validate_credentials("a@b.co", "x" * 6)
        validate_credentials("a@b.co", "x" * 128)


class TestDetectThreats:
    """Tests for detect_threats."""

    def test_clean_input(self):
        assert detect_threats("caja@barvip.com") == []

    def test_sql_injection(self):
        assert "sql_injection" in detect_threats("' OR 1=1 --")

    def test_xss(self):
        assert "xss" in detect_threats("<script>alert(1)</script>")

    def test_path_traversal(self):
        assert "path_traversal" in detect_threats("../../etc/passwd")

    def test_command_injection(self):
        assert "command_injection" in detect_threats("a; rm -rf /")

    def test_multiple_threats_in_fixed_order(self):
        assert detect_threats("<script>alert(1)</script>") == ["xss", "command_injection"]
