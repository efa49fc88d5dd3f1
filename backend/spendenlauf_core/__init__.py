"""Registration core for the Spendenlauf charity run."""

from .errors import RateLimitExceeded, RegistrationError, ValidationFailed
from .models import Event, Guardian, Participant, Team, Timeslot
from .notifications import ConfirmationNotifier
from .ratelimit import RateLimiter
from .store import RegistrationStore
from .supabase import BackendError, SupabaseBackend
from .workflow import RegistrationResult, RegistrationWorkflow

__all__ = [
    "BackendError",
    "ConfirmationNotifier",
    "Event",
    "Guardian",
    "Participant",
    "RateLimitExceeded",
    "RateLimiter",
    "RegistrationError",
    "RegistrationResult",
    "RegistrationStore",
    "RegistrationWorkflow",
    "SupabaseBackend",
    "Team",
    "Timeslot",
    "ValidationFailed",
]
