from __future__ import annotations

from typing import Dict, List, Optional

from .supabase import BackendError


UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"


class RegistrationError(ValueError):
    """A registration was refused; ``message`` is shown to the user as-is."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors: Dict[str, str] = dict(errors or {})
        # Compensating writes that failed while unwinding this registration
        self.compensation_failures: List[str] = []


class ValidationFailed(RegistrationError):
    def __init__(self, errors: Dict[str, str], message: str = "Bitte überprüfen Sie Ihre Eingaben.") -> None:
        super().__init__(message, errors)


class RateLimitExceeded(RegistrationError):
    pass


def describe_write_error(exc: BackendError, table: str) -> str:
    """Turn a failed insert/update into the message shown to the user.

    Only unique and check violations get a friendlier text, every other
    backend message is passed through unchanged.
    """
    detail = (exc.detail or exc.message or "").lower()

    if exc.code == UNIQUE_VIOLATION:
        if table == "teams":
            return "Dieser Teamname ist bereits vergeben."
        return "Diese E-Mail-Adresse ist bereits registriert."

    if exc.code == CHECK_VIOLATION:
        if "email" in detail or "adult" in detail:
            return "Erwachsene Teilnehmer benötigen eine E-Mail-Adresse."
        if "age" in detail:
            return "Das angegebene Alter ist für diesen Lauf nicht zulässig."
        if "gender" in detail:
            return "Ungültige Angabe beim Geschlecht."
        return "Die Angaben verletzen eine Datenbankregel. Bitte überprüfen Sie Ihre Eingaben."

    return exc.message
