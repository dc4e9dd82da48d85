"""
Unit tests for input security validation.

Tests severity policy, sanitization and user agent analysis.
"""

import pytest

from planner_guard.core.security import (
    SecurityVerdict,
    analyze_user_agent,
    sanitize_html_strict,
    validate_input_security,
    validate_message,
)
from planner_guard.core.threat_patterns import RiskLevel

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class TestSecurityVerdict:
    """Test verdict invariants."""

    def test_valid_verdict_requires_sanitized_input(self):
        with pytest.raises(ValueError, match="requires sanitized_input"):
            SecurityVerdict(is_valid=True, risk_level=RiskLevel.LOW)

    def test_invalid_verdict_rejects_sanitized_input(self):
        with pytest.raises(ValueError, match="cannot carry sanitized_input"):
            SecurityVerdict(is_valid=False, risk_level=RiskLevel.HIGH, sanitized_input="x")


class TestValidateInputSecurity:
    """Test the severity policy."""

    def test_clean_input(self):
        verdict = validate_input_security("I want to open a small bakery in Lisbon")

        assert verdict.is_valid is True
        assert verdict.risk_level == RiskLevel.LOW
        assert verdict.issues == []
        assert verdict.sanitized_input == "I want to open a small bakery in Lisbon"

    def test_spam_and_sql_is_critical(self):
        verdict = validate_input_security("click here now SELECT * FROM users")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.CRITICAL
        assert verdict.sanitized_input is None
        assert any(issue.startswith("SQL injection risk") for issue in verdict.issues)
        assert any(issue.startswith("Spam pattern") for issue in verdict.issues)

    def test_xss_is_high(self):
        verdict = validate_input_security("<iframe src=x></iframe>")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.HIGH
        assert "XSS risk: iframe_tag" in verdict.issues

    def test_xss_does_not_lower_critical(self):
        verdict = validate_input_security("<script>alert(1)</script>")

        # "script" is also an SQL-family keyword
        assert verdict.risk_level == RiskLevel.CRITICAL

    def test_spam_is_medium(self):
        verdict = validate_input_security("Congratulations you are a winner")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.MEDIUM

    def test_file_extension_is_medium(self):
        verdict = validate_input_security("please run setup.exe now")

        assert verdict.risk_level == RiskLevel.MEDIUM
        assert "Suspicious file extension detected" in verdict.issues

    def test_url_encoded_payload(self):
        verdict = validate_input_security("%3Cscript%3Ealert(1)%3C%2Fscript%3E")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.MEDIUM
        assert verdict.issues == ["Encoded malicious payload detected"]

    def test_html_entity_payload(self):
        verdict = validate_input_security("&lt;script&gt;alert(1)&lt;/script&gt;")

        assert verdict.is_valid is False
        assert "HTML entity encoded payload detected" in verdict.issues

    def test_non_string_rejected_as_medium(self):
        verdict = validate_input_security(12345, "message")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.MEDIUM
        assert verdict.issues == ["message must be a string"]

    def test_spam_does_not_lower_critical(self):
        verdict = validate_input_security("DROP TABLE users, you are a winner")

        assert verdict.risk_level == RiskLevel.CRITICAL


class TestSanitization:
    """Test markup stripping and idempotence on clean input."""

    def test_strips_tags(self):
        assert sanitize_html_strict("<b>Grow</b> my bakery") == "Grow my bakery"

    def test_strips_script_and_style_bodies(self):
        assert sanitize_html_strict("a<style>p {}</style>b") == "ab"

    def test_normalizes_whitespace_and_control_characters(self):
        assert sanitize_html_strict("  Grow\x07 my\t\tbakery \n fast ") == "Grow my bakery fast"

    def test_non_string(self):
        assert sanitize_html_strict(None) == ""

    def test_revalidating_sanitized_input_is_valid(self):
        first = validate_input_security("Plan   my\tcoffee\x0b shop\n")
        assert first.is_valid is True
        assert first.sanitized_input == "Plan my coffee shop"

        second = validate_input_security(first.sanitized_input)
        assert second.is_valid is True
        assert second.sanitized_input == first.sanitized_input

    def test_keyword_split_by_tag_is_rejected(self):
        verdict = validate_input_security("DR<x>OP TABLE users now")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.CRITICAL
        assert verdict.sanitized_input is None

    def test_keyword_split_by_control_character_is_rejected(self):
        verdict = validate_input_security("SEL\x00ECT name FROM users")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.CRITICAL

    def test_event_handler_split_by_tag_is_rejected(self):
        verdict = validate_input_security("o<x>nclick=alert(1)")

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.HIGH

    def test_duplicate_findings_reported_once(self):
        verdict = validate_input_security("DROP TABLE users")

        assert len(verdict.issues) == len(set(verdict.issues))


class TestValidateMessage:
    """Test structural checks before security checks."""

    def test_valid(self):
        verdict = validate_message("Help me plan my bakery", 5, 2000)
        assert verdict.is_valid is True

    def test_empty(self):
        verdict = validate_message("   ", 5, 2000)
        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.LOW
        assert verdict.issues == ["message is required"]

    def test_too_short(self):
        verdict = validate_message(" hi ", 5, 2000)
        assert verdict.issues == ["message must be at least 5 characters long"]
        assert verdict.has_security_findings is False

    def test_too_long(self):
        verdict = validate_message("a" * 2001, 5, 2000)
        assert verdict.issues == ["message must be at most 2000 characters long"]

    def test_markup_only_is_required(self):
        verdict = validate_message("<b></b><i></i>", 5, 2000)

        assert verdict.is_valid is False
        assert verdict.risk_level == RiskLevel.LOW
        assert verdict.issues == ["message is required"]

    def test_minimum_applies_to_sanitized_text(self):
        verdict = validate_message("<b>hi</b>", 5, 2000)

        assert verdict.is_valid is False
        assert verdict.issues == ["message must be at least 5 characters long"]

    def test_length_bounds_inclusive(self):
        assert validate_message("abcde", 5, 10).is_valid is True
        assert validate_message("a" * 10, 5, 10).is_valid is True

    def test_security_findings(self):
        verdict = validate_message("DROP TABLE users", 5, 2000)
        assert verdict.is_valid is False
        assert verdict.has_security_findings is True


class TestAnalyzeUserAgent:
    """Test user agent heuristics."""

    def test_browser(self):
        analysis = analyze_user_agent(CHROME_UA)

        assert analysis.is_bot is False
        assert analysis.is_suspicious is False
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.reasons == []

    def test_missing(self):
        analysis = analyze_user_agent(None)

        assert analysis.is_suspicious is True
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_crawler_is_bot_but_not_suspicious(self):
        analysis = analyze_user_agent("Googlebot/2.1 (+http://www.google.com/bot.html)")

        assert analysis.is_bot is True
        assert analysis.is_suspicious is False
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_curl_is_high(self):
        analysis = analyze_user_agent("curl/8.0")

        assert analysis.is_bot is True
        assert analysis.is_suspicious is True
        assert analysis.risk_level == RiskLevel.HIGH
        assert "User agent too short" in analysis.reasons

    def test_too_long(self):
        analysis = analyze_user_agent("Mozilla/5.0 " + "x" * 500)

        assert analysis.is_suspicious is True
        assert analysis.risk_level == RiskLevel.HIGH
        assert "User agent too long" in analysis.reasons

    def test_no_browser_indicator(self):
        analysis = analyze_user_agent("InternalClient/1.0 (build 42)")

        assert analysis.is_bot is False
        assert analysis.is_suspicious is True
        assert analysis.risk_level == RiskLevel.MEDIUM
        assert analysis.reasons == ["No valid browser indicators"]
