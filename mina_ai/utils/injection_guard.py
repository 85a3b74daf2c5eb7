"""
Prompt-injection screening for inbound chat text.

Text is NFKC-normalized before matching so lookalike characters
(circled / fullwidth letters) fold to ASCII and cannot dodge the patterns.
Findings are returned as data; the caller decides whether to refuse.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple


@dataclass(frozen=True)
class InjectionCheckResult:
    detected: bool
    patterns: List[str] = field(default_factory=list)


# (name, pattern). Order is the reporting order.
INJECTION_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    (
        "system_override",
        re.compile(
            r"\b(?:ignore|disregard|forget)\s+(?:all\s+)?(?:previous|above|prior|earlier)\s+"
            r"(?:instructions?|prompts?|rules?|guidelines?)",
            re.IGNORECASE,
        ),
    ),
    (
        "role_hijack",
        re.compile(
            r"\b(?:you\s+are\s+now|act\s+as|pretend\s+(?:to\s+be|you(?:'re|\s+are))|"
            r"new\s+(?:role|persona|identity|instructions?))\b",
            re.IGNORECASE,
        ),
    ),
    (
        "system_prompt_leak",
        re.compile(
            r"\b(?:reveal|show|display|print|output|repeat)\s+(?:\w+\s+)?(?:your\s+)?(?:system\s+)?"
            r"(?:prompt|instructions?|guidelines?|rules?)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "delimiter_injection",
        re.compile(
            r"(?:</?system>|</?user>|</?assistant>|\[SYSTEM\]|\[INST\]|\[/INST\]|<<SYS>>|"
            r"<\|(?:im_start|im_end|system|user|assistant)\|>)",
            re.IGNORECASE,
        ),
    ),
    (
        "jailbreak_dan",
        re.compile(
            r"\b(?:DAN|do\s+anything\s+now|jailbreak|bypass\s+(?:filters?|restrictions?|safety|guidelines?))\b",
            re.IGNORECASE,
        ),
    ),
    (
        "developer_mode",
        re.compile(
            r"\b(?:developer\s+mode|maintenance\s+mode|debug\s+mode|admin\s+mode|god\s+mode)\s+"
            r"(?:enabled?|activated?|on)\b",
            re.IGNORECASE,
        ),
    ),
)


def normalize(text: str) -> str:
    return unicodedata.normalize("NFKC", text)


def check_injection(text: Optional[str]) -> InjectionCheckResult:
    """Check a message for prompt injection patterns (e.g. ⓘgnore → ignore after NFKC)."""
    if not text or not isinstance(text, str):
        return InjectionCheckResult(detected=False, patterns=[])

    normalized = normalize(text)
    found = [name for name, pattern in INJECTION_PATTERNS if pattern.search(normalized)]
    return InjectionCheckResult(detected=bool(found), patterns=found)
