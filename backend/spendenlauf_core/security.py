"""Submit-time content checks, the math CAPTCHA and client identifiers."""

from __future__ import annotations

import hashlib
import hmac
import os
import random
import re
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from email_validator import EmailNotValidError, validate_email as _validate_email_address

from .errors import RegistrationError


_SCRIPT_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>")
_SUSPICIOUS = re.compile(r"[<>\"'&]")
_NAME = re.compile(r"[^\W\d_]+(?:[ -]+[^\W\d_]+)*")
# German mobile numbers, e.g. 0151 12345678 or +49 171 1234567
_DE_MOBILE = re.compile(r"((\+49|0049|0)1)(5[0-25-9]\d|6([23]|0\d?)|7([0-57-9]|6\d))\d{7,9}")
_INTEGER = re.compile(r"-?\d+")


@dataclass
class CheckResult:
    is_valid: bool
    sanitized: str
    error: Optional[str] = None


def sanitize_input(value: object) -> str:
    """Strip markup and surrounding whitespace from free text."""
    if not isinstance(value, str) or not value:
        return ""
    cleaned = _SCRIPT_BLOCK.sub("", value)
    cleaned = _TAG.sub("", cleaned)
    return cleaned.strip()


def validate_email(email: str) -> CheckResult:
    sanitized = sanitize_input(email).lower()
    if not sanitized:
        return CheckResult(False, "", "E-Mail ist erforderlich")
    if len(sanitized) > 254:
        return CheckResult(False, sanitized, "E-Mail-Adresse ist zu lang")
    try:
        _validate_email_address(sanitized, check_deliverability=False)
    except EmailNotValidError:
        return CheckResult(False, sanitized, "Ungültige E-Mail-Adresse")
    return CheckResult(True, sanitized)


def validate_name(name: str) -> CheckResult:
    sanitized = sanitize_input(name)
    if not sanitized:
        return CheckResult(False, "", "Name ist erforderlich")
    if len(sanitized) < 2:
        return CheckResult(False, sanitized, "Name muss mindestens 2 Zeichen lang sein")
    if len(sanitized) > 50:
        return CheckResult(False, sanitized, "Name ist zu lang (max. 50 Zeichen)")
    if _SUSPICIOUS.search(name or "") or not _NAME.fullmatch(sanitized):
        return CheckResult(False, sanitized, "Name enthält ungültige Zeichen")
    return CheckResult(True, sanitized)


def validate_phone(phone: str) -> CheckResult:
    sanitized = re.sub(r"[\s/()-]+", "", sanitize_input(phone))
    if not sanitized:
        # phone is optional wherever this check is used on its own
        return CheckResult(True, "")
    if not _DE_MOBILE.fullmatch(sanitized):
        return CheckResult(False, sanitized, "Ungültige Telefonnummer")
    return CheckResult(True, sanitized)


def validate_address(address: str) -> CheckResult:
    sanitized = sanitize_input(address)
    if not sanitized:
        return CheckResult(False, "", "Adresse ist erforderlich")
    if len(sanitized) < 5:
        return CheckResult(False, sanitized, "Adresse ist zu kurz")
    if len(sanitized) > 200:
        return CheckResult(False, sanitized, "Adresse ist zu lang (max. 200 Zeichen)")
    return CheckResult(True, sanitized)


def check_fields(
    names: Iterable[Tuple[str, str]] = (),
    emails: Iterable[Tuple[str, str]] = (),
    phones: Iterable[Tuple[str, str]] = (),
    addresses: Iterable[Tuple[str, str]] = (),
) -> None:
    """Run the content checks over ``(field, value)`` pairs.

    Raises :class:`RegistrationError` carrying every failing field; the first
    failure becomes the user-facing message.
    """
    errors: Dict[str, str] = {}
    checks = (
        (names, validate_name),
        (emails, validate_email),
        (phones, validate_phone),
        (addresses, validate_address),
    )
    for pairs, check in checks:
        for field, value in pairs:
            result = check(value)
            if not result.is_valid and result.error:
                errors.setdefault(field, result.error)
    if errors:
        raise RegistrationError(next(iter(errors.values())), errors)


# ---------------------------------------------------------------------------
# CAPTCHA


def generate_math_captcha(rng: random.Random | None = None) -> Tuple[str, int]:
    """Return ``(question, answer)`` for a small arithmetic task."""
    rng = rng or random.Random()
    operation = rng.choice(["+", "-", "*"])
    if operation == "*":
        left, right = rng.randint(1, 5), rng.randint(1, 5)
        return f"{left} × {right}", left * right

    left, right = rng.randint(1, 10), rng.randint(1, 10)
    if operation == "-":
        larger, smaller = max(left, right), min(left, right)
        return f"{larger} - {smaller}", larger - smaller
    return f"{left} + {right}", left + right


def validate_captcha(user_answer: str, correct_answer: int) -> bool:
    """Strict integer comparison: ``"7"`` matches 7, ``"7.0"`` and ``"sieben"`` do not."""
    sanitized = sanitize_input(user_answer)
    if not _INTEGER.fullmatch(sanitized):
        return False
    return int(sanitized) == correct_answer


class CaptchaSigner:
    """Issues stateless CAPTCHA challenges.

    The token binds the expected answer with an HMAC, so the server does not
    have to remember issued questions. Solved tokens are remembered until they
    expire and cannot be used twice within this process.
    """

    def __init__(self, secret: str | None = None, ttl_seconds: int = 15 * 60) -> None:
        secret = secret or os.getenv("CAPTCHA_SECRET") or secrets.token_hex(32)
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._used: Dict[str, int] = {}
        self._lock = threading.Lock()

    def issue(self, now: float | None = None) -> Dict[str, str]:
        question, answer = generate_math_captcha()
        expires = int((now if now is not None else time.time()) + self.ttl_seconds)
        nonce = secrets.token_hex(8)
        signature = self._sign(expires, nonce, answer)
        return {"question": question, "token": f"{expires}.{nonce}.{signature}"}

    def verify(self, token: str, user_answer: str, now: float | None = None) -> bool:
        current = now if now is not None else time.time()
        try:
            expires_raw, nonce, signature = (token or "").split(".", 2)
            expires = int(expires_raw)
        except ValueError:
            return False
        if expires < current:
            return False

        sanitized = sanitize_input(user_answer)
        if not _INTEGER.fullmatch(sanitized):
            return False
        expected = self._sign(expires, nonce, int(sanitized))
        if not hmac.compare_digest(expected, signature):
            return False

        with self._lock:
            for used_nonce in [key for key, until in self._used.items() if until < current]:
                del self._used[used_nonce]
            if nonce in self._used:
                return False
            self._used[nonce] = expires
        return True

    def _sign(self, expires: int, nonce: str, answer: int) -> str:
        message = f"{expires}.{nonce}.{answer}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


def client_identifier(host: str | None, user_agent: str | None) -> str:
    """Rate-limit key for an HTTP caller: address plus a short user-agent digest."""
    agent_digest = hashlib.sha256((user_agent or "").encode("utf-8")).hexdigest()[:10]
    return f"{host or 'unknown'}_{agent_digest}"
