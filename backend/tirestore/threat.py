from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable, Optional

from fastapi import Request

from .request_info import UNKNOWN

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_FORBIDDEN_CHARS = re.compile(r"['\"<>{}]")
SCRIPT_MARKERS = ("<script>", "javascript:")
MAX_PASSWORD_LENGTH = 200


@dataclass(frozen=True)
class RequestSignals:
    user_agent: Optional[str]
    accept: Optional[str]
    accept_language: Optional[str]
    requested_with: Optional[str]
    referer: Optional[str]
    email: Optional[str]
    password: Optional[str]

    @classmethod
    def from_request(
        cls,
        request: Request,
        email: Optional[str],
        password: Optional[str],
    ) -> RequestSignals:
        headers = request.headers
        return cls(
            user_agent=headers.get("user-agent"),
            accept=headers.get("accept"),
            accept_language=headers.get("accept-language"),
            requested_with=headers.get("x-requested-with"),
            referer=headers.get("referer"),
            email=email,
            password=password,
        )


@dataclass(frozen=True)
class ThreatAssessment:
    score: int
    signals: tuple[str, ...]

    def exceeds(self, threshold: int) -> bool:
        return self.score >= threshold


def _agent(signals: RequestSignals) -> str:
    return (signals.user_agent or "").lower()


def _missing_user_agent(signals: RequestSignals) -> bool:
    return not signals.user_agent or signals.user_agent == UNKNOWN


def _suspicious_password(signals: RequestSignals) -> bool:
    password = signals.password
    if not password:
        return False
    return (
        any(marker in password for marker in SCRIPT_MARKERS)
        or "eval(" in password
        or len(password) > MAX_PASSWORD_LENGTH
        or PASSWORD_FORBIDDEN_CHARS.search(password) is not None
    )


def _suspicious_email(signals: RequestSignals) -> bool:
    email = signals.email
    if not email:
        return False
    return any(marker in email for marker in SCRIPT_MARKERS) or EMAIL_PATTERN.match(email) is None


CHECKS: tuple[tuple[str, Callable[[RequestSignals], bool]], ...] = (
    ("missing_user_agent", _missing_user_agent),
    ("bot_user_agent", lambda s: "bot" in _agent(s)),
    ("crawler_user_agent", lambda s: "crawler" in _agent(s)),
    ("spider_user_agent", lambda s: "spider" in _agent(s)),
    ("suspicious_password", _suspicious_password),
    ("suspicious_email", _suspicious_email),
    ("missing_accept", lambda s: not s.accept),
    ("missing_accept_language", lambda s: not s.accept_language),
    ("ajax_without_referer", lambda s: s.requested_with == "XMLHttpRequest" and not s.referer),
)


def assess(signals: RequestSignals) -> ThreatAssessment:
    """Tally request-shape anomalies; each tripped check is worth one point.

    Cheap bot deterrence, not a guarantee: ordinary clients with unusual
    headers can trip it.
    """
    tripped = tuple(name for name, check in CHECKS if check(signals))
    return ThreatAssessment(score=len(tripped), signals=tripped)


def score(signals: RequestSignals) -> int:
    return assess(signals).score
