"""
Threat pattern catalog.

Named matchers for spam, SQL injection, cross-site scripting, suspicious
file extensions and bot user agents. The catalog is plain data so each
pattern can be tested on its own and new ones added without touching
the validator.
"""

import functools
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


@functools.total_ordering
class RiskLevel(Enum):
    """Ordered severity of a finding."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.value < other.value


class ThreatFamily(Enum):
    """Matcher families in the catalog."""
    SQL_INJECTION = "sql_injection"
    XSS = "xss"
    SPAM = "spam"
    FILE_EXTENSION = "file_extension"
    BOT_USER_AGENT = "bot_user_agent"
    SUSPICIOUS_USER_AGENT = "suspicious_user_agent"


@dataclass(frozen=True)
class ThreatPattern:
    """A single named matcher."""
    name: str
    family: ThreatFamily
    pattern: "re.Pattern[str]"
    severity: RiskLevel

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _p(name: str, family: ThreatFamily, regex: str, severity: RiskLevel, flags: int = re.IGNORECASE) -> ThreatPattern:
    return ThreatPattern(name=name, family=family, pattern=re.compile(regex, flags), severity=severity)


_SQL = ThreatFamily.SQL_INJECTION
_XSS = ThreatFamily.XSS
_SPAM = ThreatFamily.SPAM
_EXT = ThreatFamily.FILE_EXTENSION
_BOT = ThreatFamily.BOT_USER_AGENT
_SUA = ThreatFamily.SUSPICIOUS_USER_AGENT

SQL_INJECTION_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("sql_keyword", _SQL, r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b", RiskLevel.CRITICAL),
    _p("sql_metacharacter", _SQL, r"(--|/\*|\*/|;|'|\")", RiskLevel.CRITICAL, flags=0),
    _p("sql_boolean_comparison", _SQL, r"(\bOR\b|\bAND\b).*[=<>]", RiskLevel.CRITICAL),
    _p("sql_script_keyword", _SQL, r"\b(SCRIPT|JAVASCRIPT|VBSCRIPT|ONLOAD|ONERROR)\b", RiskLevel.CRITICAL),
    _p("sql_union_select", _SQL, r"\bUNION\b.*\bSELECT\b", RiskLevel.CRITICAL),
    _p("sql_insert_into", _SQL, r"\bINSERT\b.*\bINTO\b", RiskLevel.CRITICAL),
    _p("sql_update_set", _SQL, r"\bUPDATE\b.*\bSET\b", RiskLevel.CRITICAL),
    _p("sql_delete_from", _SQL, r"\bDELETE\b.*\bFROM\b", RiskLevel.CRITICAL),
    _p("sql_drop_table", _SQL, r"\bDROP\b.*\bTABLE\b", RiskLevel.CRITICAL),
    _p("sql_alter_table", _SQL, r"\bALTER\b.*\bTABLE\b", RiskLevel.CRITICAL),
    _p("sql_create_table", _SQL, r"\bCREATE\b.*\bTABLE\b", RiskLevel.CRITICAL),
    _p("sql_exec", _SQL, r"\bEXEC\b|\bEXECUTE\b", RiskLevel.CRITICAL),
    _p("sql_time_based", _SQL, r"(benchmark|sleep|waitfor|delay)\s*\(", RiskLevel.CRITICAL),
    _p("sql_tautology", _SQL, r"(\bOR\b|\bAND\b)\s+\d+\s*[=<>]", RiskLevel.CRITICAL),
)

XSS_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("script_tag", _XSS, r"<script[^>]*>.*?</script>", RiskLevel.HIGH, flags=re.IGNORECASE | re.DOTALL),
    _p("javascript_uri", _XSS, r"javascript:", RiskLevel.HIGH),
    _p("event_handler", _XSS, r"on\w+\s*=", RiskLevel.HIGH),
    _p("iframe_tag", _XSS, r"<iframe[^>]*>.*?</iframe>", RiskLevel.HIGH, flags=re.IGNORECASE | re.DOTALL),
    _p("object_tag", _XSS, r"<object[^>]*>.*?</object>", RiskLevel.HIGH, flags=re.IGNORECASE | re.DOTALL),
    _p("embed_tag", _XSS, r"<embed[^>]*>.*?</embed>", RiskLevel.HIGH, flags=re.IGNORECASE | re.DOTALL),
    _p("data_html_uri", _XSS, r"data:\s*text/html", RiskLevel.HIGH),
    _p("vbscript_uri", _XSS, r"vbscript:", RiskLevel.HIGH),
    _p("livescript_uri", _XSS, r"livescript:", RiskLevel.HIGH),
    _p("mocha_uri", _XSS, r"mocha:", RiskLevel.HIGH),
    _p("charset_override", _XSS, r"charset\s*=", RiskLevel.HIGH),
    _p("window_eval", _XSS, r"window\s*\[\s*[\"']eval[\"']\s*\]", RiskLevel.HIGH),
    _p("base64_payload", _XSS, r"base64\s*,", RiskLevel.HIGH),
    _p("from_char_code", _XSS, r"fromCharCode", RiskLevel.HIGH),
    _p("inner_html", _XSS, r"innerHTML", RiskLevel.HIGH),
    _p("outer_html", _XSS, r"outerHTML", RiskLevel.HIGH),
)

SPAM_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("spam_keyword", _SPAM, r"\b(viagra|cialis|casino|poker|lottery|winner|congratulations)\b", RiskLevel.MEDIUM),
    _p("call_to_action", _SPAM, r"\b(click here|visit now|act now|limited time|free money|get rich quick)\b", RiskLevel.MEDIUM),
    _p("income_scheme", _SPAM, r"\b(make money fast|work from home|guaranteed income|no experience needed)\b", RiskLevel.MEDIUM),
    _p("url", _SPAM, r"https?://[^\s]+", RiskLevel.MEDIUM),
    _p("credit_card_number", _SPAM, r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b", RiskLevel.MEDIUM, flags=0),
    _p("email_address", _SPAM, r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", RiskLevel.MEDIUM),
    _p("phone_number", _SPAM, r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b", RiskLevel.MEDIUM, flags=0),
)

FILE_EXTENSION_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("executable_extension", _EXT, r"\.(exe|bat|cmd|com|pif|scr|vbs|js|jar|app|deb|pkg|dmg)(\s|$)", RiskLevel.MEDIUM),
    _p("server_script_extension", _EXT, r"\.(php|asp|aspx|jsp|cgi|pl|py|rb|sh)(\s|$)", RiskLevel.MEDIUM),
    _p("config_file_extension", _EXT, r"\.(htaccess|htpasswd|ini|conf|cfg)(\s|$)", RiskLevel.MEDIUM),
)

BOT_USER_AGENT_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("crawler", _BOT, r"bot|crawler|spider|scraper", RiskLevel.MEDIUM),
    _p("scripted_client", _BOT, r"curl|wget|python|php", RiskLevel.MEDIUM),
    _p("api_tool", _BOT, r"postman|insomnia|httpie", RiskLevel.MEDIUM),
)

SUSPICIOUS_USER_AGENT_PATTERNS: Tuple[ThreatPattern, ...] = (
    _p("http_tool", _SUA, r"python|curl|wget|postman|insomnia|httpie", RiskLevel.HIGH),
    _p("attack_keyword", _SUA, r"scanner|exploit|hack|attack", RiskLevel.HIGH),
    _p("attack_tool", _SUA, r"sqlmap|nikto|nmap|burp", RiskLevel.HIGH),
)

# Substrings every mainstream browser user agent carries at least one of.
BROWSER_INDICATORS: Tuple[str, ...] = ("Mozilla", "Chrome", "Safari", "Firefox", "Edge")

MIN_USER_AGENT_LENGTH = 11
MAX_USER_AGENT_LENGTH = 499

CATALOG: Tuple[ThreatPattern, ...] = (
    SQL_INJECTION_PATTERNS
    + XSS_PATTERNS
    + SPAM_PATTERNS
    + FILE_EXTENSION_PATTERNS
    + BOT_USER_AGENT_PATTERNS
    + SUSPICIOUS_USER_AGENT_PATTERNS
)


def patterns_for(family: ThreatFamily) -> Tuple[ThreatPattern, ...]:
    """All catalog patterns belonging to one family, in catalog order."""
    return tuple(p for p in CATALOG if p.family == family)


def classify(text: str, family: ThreatFamily) -> List[ThreatPattern]:
    """Return the patterns of a family that match the text.

    Args:
        text: Text to classify
        family: Matcher family to run

    Returns:
        Matching patterns in catalog order (empty if none match)
    """
    return [p for p in patterns_for(family) if p.matches(text)]
