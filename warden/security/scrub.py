"""Secret redaction for tool and command output.

Regex-based, best-effort redaction of credentials that commonly leak into
logs and config files (passwords, API keys, bearer tokens, PEM private
keys, AWS keys, credential-bearing connection URLs, card numbers, SSNs).
It cannot catch every secret; it is a last layer applied to everything
that leaves the sandbox towards the chat or the LLM.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Tuple


DEFAULT_MAX_LENGTH = 2900
TRUNCATION_MARKER = "\n... [truncated]"


@dataclass(frozen=True)
class ScrubResult:
    """Output of a scrubbing pass."""

    text: str
    redactions: int


# ---------------------------------------------------------------------------
# Pattern definitions
# ---------------------------------------------------------------------------

_I = re.IGNORECASE

_SENSITIVE_PATTERNS: List[Tuple[re.Pattern[str], str]] = [
    # Passwords
    (re.compile(r"password[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "password=[REDACTED]"),
    (re.compile(r"passwd[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "passwd=[REDACTED]"),
    (re.compile(r"pwd[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "pwd=[REDACTED]"),
    # API keys and tokens
    (re.compile(r"api[_-]?key[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "api_key=[REDACTED]"),
    (re.compile(r"apikey[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "apikey=[REDACTED]"),
    (re.compile(r"auth[_-]?token[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "auth_token=[REDACTED]"),
    (re.compile(r"access[_-]?token[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "access_token=[REDACTED]"),
    (re.compile(r"refresh[_-]?token[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "refresh_token=[REDACTED]"),
    (re.compile(r"(?<![a-z_-])token[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "token=[REDACTED]"),
    # Secrets
    (re.compile(r"client[_-]?secret[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "client_secret=[REDACTED]"),
    (re.compile(r"(?<![a-z_-])secret[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I), "secret=[REDACTED]"),
    # Authorization headers
    (re.compile(r"authorization:\s*bearer\s+\S+", _I), "Authorization: Bearer [REDACTED]"),
    (re.compile(r"authorization:\s*basic\s+\S+", _I), "Authorization: Basic [REDACTED]"),
    # PEM private keys
    (
        re.compile(r"-----BEGIN[A-Z ]+PRIVATE KEY-----[\s\S]*?-----END[A-Z ]+PRIVATE KEY-----"),
        "[PRIVATE KEY REDACTED]",
    ),
    # AWS credentials
    (
        re.compile(r"aws[_-]?access[_-]?key[_-]?id[=:]\s*[\"']?([A-Z0-9]{20})[\"']?", _I),
        "AWS_ACCESS_KEY_ID=[REDACTED]",
    ),
    (
        re.compile(r"aws[_-]?secret[_-]?access[_-]?key[=:]\s*[\"']?([^\"'\s]+)[\"']?", _I),
        "AWS_SECRET_ACCESS_KEY=[REDACTED]",
    ),
    # Connection strings
    (
        re.compile(
            r"(mysql|postgres|postgresql|mongodb|redis|amqp|elasticsearch)://[^:/\s]+:([^@\s]+)@",
            _I,
        ),
        r"\1://[USER]:[REDACTED]@",
    ),
    (re.compile(r"(https?)://[^:/\s]+:([^@\s]+)@", _I), r"\1://[USER]:[REDACTED]@"),
    (re.compile(r"jdbc:[a-z]+://[^?\s]+\?[^&\s]*password=([^&\s]+)", _I), "jdbc:...[REDACTED]"),
    (re.compile(r"connectionstring[=:]\s*[\"']?[^\"'\s]+[\"']?", _I), "connectionstring=[REDACTED]"),
    # Generic credentials
    (re.compile(r"credentials?[=:]\s*[\"']?[^\"'\s]+[\"']?", _I), "credential=[REDACTED]"),
    (re.compile(r"private[_-]?key[=:]\s*[\"']?[^\"'\s]+[\"']?", _I), "private_key=[REDACTED]"),
    # Card numbers
    (re.compile(r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b"), "[CARD NUMBER REDACTED]"),
    # US SSNs
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN REDACTED]"),
]


def scrub(text: str) -> ScrubResult:
    """Redact every known secret pattern in *text* and count replacements."""
    total = 0
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text, n = pattern.subn(replacement, text)
        total += n
    return ScrubResult(text=text, redactions=total)


def scrub_sensitive_data(text: str) -> str:
    """Return *text* with sensitive values replaced by placeholders."""
    return scrub(text).text


def count_potential_secrets(text: str) -> int:
    """Count matches of every secret pattern without modifying *text*."""
    return sum(len(pattern.findall(text)) for pattern, _ in _SENSITIVE_PATTERNS)


def truncate_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


def process_output(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Scrub then truncate, ready for a chat message."""
    return truncate_text(scrub_sensitive_data(text), max_length)
