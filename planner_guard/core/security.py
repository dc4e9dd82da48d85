"""
Input security validation.

Classifies untrusted text against the threat pattern catalog before it
reaches any downstream system, and analyzes user agents for bot and
tooling signatures.

Severity policy:
1. Any SQL injection match forces CRITICAL
2. Any XSS match raises to HIGH (unless already CRITICAL)
3. Spam, suspicious extensions and decoded payloads raise to at least MEDIUM
"""

import html
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from .threat_patterns import (
    BROWSER_INDICATORS,
    MAX_USER_AGENT_LENGTH,
    MIN_USER_AGENT_LENGTH,
    RiskLevel,
    ThreatFamily,
    classify,
)


@dataclass(frozen=True)
class SecurityVerdict:
    """Outcome of validating a piece of text.

    sanitized_input is present exactly when is_valid is True.
    """
    is_valid: bool
    risk_level: RiskLevel
    issues: List[str] = field(default_factory=list)
    sanitized_input: Optional[str] = None

    def __post_init__(self):
        """Validate the verdict is internally consistent."""
        if self.is_valid and self.sanitized_input is None:
            raise ValueError("valid verdict requires sanitized_input")
        if not self.is_valid and self.sanitized_input is not None:
            raise ValueError("invalid verdict cannot carry sanitized_input")

    @property
    def has_security_findings(self) -> bool:
        """True when the rejection came from the catalog rather than structure."""
        return not self.is_valid and self.risk_level >= RiskLevel.MEDIUM


@dataclass(frozen=True)
class UserAgentAnalysis:
    """Result of user agent analysis."""
    is_bot: bool
    is_suspicious: bool
    risk_level: RiskLevel
    reasons: List[str] = field(default_factory=list)


_SCRIPT_STYLE_BLOCK = re.compile(r"<(script|style)[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")

_URL_ENCODED = re.compile(r"%[0-9a-f]{2}", re.IGNORECASE)
_HTML_ENTITY = re.compile(r"&#x?[0-9a-f]+;|&[a-z]+;", re.IGNORECASE)


def sanitize_html_strict(text: str) -> str:
    """Strip all markup and control characters, normalize whitespace.

    Args:
        text: Raw input text

    Returns:
        Plain text with no tags, no control characters and single spaces
    """
    if not isinstance(text, str):
        return ""
    cleaned = _SCRIPT_STYLE_BLOCK.sub("", text)
    cleaned = _TAG.sub("", cleaned)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def _escalate(current: RiskLevel, floor: RiskLevel) -> RiskLevel:
    return floor if floor > current else current


def _detect_encoded_payloads(text: str) -> List[str]:
    """Decode one layer of URL and HTML-entity encoding and re-check."""
    issues = []

    if _URL_ENCODED.search(text):
        decoded = urllib.parse.unquote(text, errors="strict")
        if decoded != text and (
            classify(decoded, ThreatFamily.SQL_INJECTION) or classify(decoded, ThreatFamily.XSS)
        ):
            issues.append("Encoded malicious payload detected")

    if _HTML_ENTITY.search(text):
        decoded = html.unescape(text)
        if decoded != text and (
            classify(decoded, ThreatFamily.SQL_INJECTION) or classify(decoded, ThreatFamily.XSS)
        ):
            issues.append("HTML entity encoded payload detected")

    return issues


def _scan(text: str) -> Tuple[List[str], RiskLevel]:
    """Issues and risk from every matcher family for one form of the text."""
    issues: List[str] = []
    risk = RiskLevel.LOW

    sql_hits = classify(text, ThreatFamily.SQL_INJECTION)
    if sql_hits:
        issues.extend(f"SQL injection risk: {p.name}" for p in sql_hits)
        risk = RiskLevel.CRITICAL

    xss_hits = classify(text, ThreatFamily.XSS)
    if xss_hits:
        issues.extend(f"XSS risk: {p.name}" for p in xss_hits)
        risk = _escalate(risk, RiskLevel.HIGH)

    spam_hits = classify(text, ThreatFamily.SPAM)
    if spam_hits:
        issues.extend(f"Spam pattern: {p.name}" for p in spam_hits)
        risk = _escalate(risk, RiskLevel.MEDIUM)

    if classify(text, ThreatFamily.FILE_EXTENSION):
        issues.append("Suspicious file extension detected")
        risk = _escalate(risk, RiskLevel.MEDIUM)

    try:
        encoding_issues = _detect_encoded_payloads(text)
    except UnicodeDecodeError:
        encoding_issues = ["Malformed encoding detected"]
    if encoding_issues:
        issues.extend(encoding_issues)
        risk = _escalate(risk, RiskLevel.MEDIUM)

    return issues, risk


def validate_input_security(text: Any, field_label: str = "input") -> SecurityVerdict:
    """Run text through every matcher family and return a verdict.

    Pure function over its inputs and the static catalog.

    Args:
        text: Untrusted input (anything other than str is rejected)
        field_label: Name of the field, used in issue messages

    Returns:
        SecurityVerdict with risk level and sanitized input when valid
    """
    if not isinstance(text, str):
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.MEDIUM,
            issues=[f"{field_label} must be a string"],
        )

    sanitized = sanitize_html_strict(text)
    issues: List[str] = []
    risk = RiskLevel.LOW
    # Markup or control characters can split a keyword that sanitizing rejoins
    for form in dict.fromkeys((text, sanitized)):
        form_issues, form_risk = _scan(form)
        issues.extend(issue for issue in form_issues if issue not in issues)
        risk = _escalate(risk, form_risk)

    if issues:
        return SecurityVerdict(is_valid=False, risk_level=risk, issues=issues)

    return SecurityVerdict(
        is_valid=True,
        risk_level=risk,
        issues=[],
        sanitized_input=sanitized,
    )


def validate_message(
    text: Any,
    min_length: int,
    max_length: int,
    field_label: str = "message",
) -> SecurityVerdict:
    """Structural checks (type, length bounds) followed by security checks.

    Length is measured on the stripped text, and the minimum must also hold
    for the sanitized text that is passed on. Structural failures are LOW
    risk; they are not treated as abuse signals.
    """
    if not isinstance(text, str) or not text.strip():
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.LOW,
            issues=[f"{field_label} is required"],
        )

    length = len(text.strip())
    if length < min_length:
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.LOW,
            issues=[f"{field_label} must be at least {min_length} characters long"],
        )
    if length > max_length:
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.LOW,
            issues=[f"{field_label} must be at most {max_length} characters long"],
        )

    verdict = validate_input_security(text, field_label)
    if verdict.is_valid and not verdict.sanitized_input:
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.LOW,
            issues=[f"{field_label} is required"],
        )
    if verdict.is_valid and len(verdict.sanitized_input) < min_length:
        return SecurityVerdict(
            is_valid=False,
            risk_level=RiskLevel.LOW,
            issues=[f"{field_label} must be at least {min_length} characters long"],
        )
    return verdict


def analyze_user_agent(user_agent: Optional[str]) -> UserAgentAnalysis:
    """Analyze a user agent for bot and tooling signatures.

    Each heuristic contributes independently:
    - bot signature -> bot, MEDIUM
    - tool/attack signature or implausible length -> suspicious, HIGH
    - no browser indicator on a non-bot -> suspicious, at least MEDIUM
    """
    if not user_agent or not isinstance(user_agent, str):
        return UserAgentAnalysis(
            is_bot=False,
            is_suspicious=True,
            risk_level=RiskLevel.MEDIUM,
            reasons=["Missing or invalid user agent"],
        )

    reasons: List[str] = []
    is_bot = False
    is_suspicious = False
    risk = RiskLevel.LOW

    if classify(user_agent, ThreatFamily.BOT_USER_AGENT):
        is_bot = True
        reasons.append("Bot user agent detected")
        risk = _escalate(risk, RiskLevel.MEDIUM)

    for pattern in classify(user_agent, ThreatFamily.SUSPICIOUS_USER_AGENT):
        is_suspicious = True
        reasons.append(f"Suspicious user agent pattern: {pattern.name}")
        risk = _escalate(risk, RiskLevel.HIGH)

    if len(user_agent) < MIN_USER_AGENT_LENGTH:
        is_suspicious = True
        reasons.append("User agent too short")
        risk = _escalate(risk, RiskLevel.HIGH)
    elif len(user_agent) > MAX_USER_AGENT_LENGTH:
        is_suspicious = True
        reasons.append("User agent too long")
        risk = _escalate(risk, RiskLevel.HIGH)

    if not is_bot and not any(indicator in user_agent for indicator in BROWSER_INDICATORS):
        is_suspicious = True
        reasons.append("No valid browser indicators")
        risk = _escalate(risk, RiskLevel.MEDIUM)

    return UserAgentAnalysis(
        is_bot=is_bot,
        is_suspicious=is_suspicious,
        risk_level=risk,
        reasons=reasons,
    )
