"""Infer a dev server's listening port from its log output.

The default pattern set is deliberately small. Each entry names the log
phrasing it targets; extend it only with lines observed from a real framework
and a matching case in ``tests/unit/test_ports.py``.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Pattern, Sequence, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Ordered by priority: the first pattern that yields an in-range port wins.
DEFAULT_PORT_PATTERNS: List[str] = [
    # Vite, Astro, Nuxt, Next: "Local: http://localhost:5173/"
    r"Local:?\s+https?://[^\s/]*?:(\d{2,5})",
    # Loopback or wildcard address: "Running on http://127.0.0.1:5000", "0.0.0.0:8080"
    r"(?:https?://)?(?:localhost|127\.0\.0\.1|0\.0\.0\.0|\[::1?\]):(\d{2,5})",
    # Express and friends: "Server listening on port 3000", "listening on 10.0.0.5:3000"
    r"listening\b[^\n\d]{0,60}?(?:\d{1,3}(?:\.\d{1,3}){3}:)?(\d{2,5})\b(?!\.\d)",
    # "Port 8080", "port: 8080"
    r"\bport\b[:=\s]+(\d{2,5})",
    # "ready - started server on 0.0.0.0:3000"
    r"(?:started|running|ready)\b[^\n]{0,60}?:(\d{2,5})\b",
]

PatternLike = Union[str, Pattern[str]]


class PortMatch(BaseModel):
    port: Optional[int] = None
    matched: bool = False
    pattern: Optional[str] = None


def compile_patterns(patterns: Optional[Sequence[PatternLike]] = None) -> List[Pattern[str]]:
    """Compile ``patterns`` defensively.

    Invalid expressions and expressions without a capture group are logged and
    skipped. When nothing usable remains the default set is used.
    """

    if not patterns:
        return [re.compile(p, re.IGNORECASE) for p in DEFAULT_PORT_PATTERNS]

    compiled: List[Pattern[str]] = []
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            candidate = pattern
        else:
            try:
                candidate = re.compile(str(pattern), re.IGNORECASE)
            except re.error as e:
                logger.warning(f"Skipping invalid port pattern {pattern!r}: {e}")
                continue
        if candidate.groups < 1:
            logger.warning(f"Skipping port pattern without capture group: {candidate.pattern!r}")
            continue
        compiled.append(candidate)

    if not compiled:
        logger.warning("No usable custom port patterns, falling back to defaults")
        return compile_patterns(None)
    return compiled


def _parse_port(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.isdigit():
        return None
    port = int(raw)
    if 1 <= port <= 65535:
        return port
    return None


def match_port(text: str, patterns: Optional[Iterable[PatternLike]] = None) -> PortMatch:
    """Extract a listening port from ``text``.

    Patterns are tried in order; within a pattern every occurrence is checked
    and out-of-range captures are ignored.
    """

    compiled = compile_patterns(list(patterns) if patterns is not None else None)
    for pattern in compiled:
        for found in pattern.finditer(text):
            port = _parse_port(found.group(1))
            if port is not None:
                return PortMatch(port=port, matched=True, pattern=pattern.pattern)
    return PortMatch()


class PortMatcher:
    """Pre-compiled matcher for streaming use."""

    def __init__(self, patterns: Optional[Sequence[PatternLike]] = None) -> None:
        self.patterns = compile_patterns(patterns)

    def match(self, text: str) -> PortMatch:
        return match_port(text, self.patterns)
