"""Centralized configuration for ShelfLend.

This module contains the default lending rules, option bounds, and storage
formats used throughout the engine. The rules actually in force are held by
an immutable LendingRules object built once at startup by load_rules().
"""
import logging
import os
from dataclasses import dataclass, fields, replace

from dotenv import load_dotenv

from shelflend.exceptions import ConfigurationError

# =============================================================================
# LOAN DEFAULTS
# =============================================================================

# Maximum number of active loans a borrower may hold
DEFAULT_MAX_LOANS_PER_USER = 3

# Default loan period in days
DEFAULT_LOAN_PERIOD_DAYS = 14

# Maximum number of extensions per loan
DEFAULT_MAX_EXTENSIONS = 2

# Default extension length in days
DEFAULT_EXTENSION_DAYS = 7

# =============================================================================
# FINES (integer cents)
# =============================================================================

# Fine accrued per overdue day (10.00)
DEFAULT_FINE_PER_DAY = 1000

# Days after the due date during which no fine accrues
DEFAULT_GRACE_PERIOD_DAYS = 1

# Fine cap per loan (500.00)
DEFAULT_MAX_FINE_AMOUNT = 50000

# Whether borrowers with unpaid fines may still borrow
DEFAULT_ALLOW_LOANS_WITH_FINES = False

# =============================================================================
# OPTION BOUNDS
# =============================================================================

MIN_LOAN_DAYS = 1
MAX_LOAN_DAYS = 30

MIN_EXTENSION_DAYS = 1
MAX_EXTENSION_DAYS = 14

MAX_NOTES_LENGTH = 500
MAX_EXTENSION_REASON_LENGTH = 200

MIN_FORGIVE_REASON_LENGTH = 10
MAX_FORGIVE_REASON_LENGTH = 500

# =============================================================================
# STORAGE FORMATS
# =============================================================================

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Timestamp format for storage
TIMESTAMP_FORMAT_STORAGE = "%Y-%m-%d %H:%M:%S"

# Seconds to wait on a locked database before giving up
DEFAULT_DB_TIMEOUT = 30.0

# Environment variable prefix for rule overrides
ENV_PREFIX = "SHELFLEND_"


@dataclass(frozen=True)
class LendingRules:
    """Process-wide lending rules.

    Loaded once at startup and passed to every service. Money values are
    integer cents.
    """
    max_loans_per_user: int = DEFAULT_MAX_LOANS_PER_USER
    loan_period_days: int = DEFAULT_LOAN_PERIOD_DAYS
    max_extensions: int = DEFAULT_MAX_EXTENSIONS
    extension_days: int = DEFAULT_EXTENSION_DAYS
    fine_per_day: int = DEFAULT_FINE_PER_DAY
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    max_fine_amount: int = DEFAULT_MAX_FINE_AMOUNT
    allow_loans_with_fines: bool = DEFAULT_ALLOW_LOANS_WITH_FINES

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise ConfigurationError("Invalid lending rules", {"errors": errors})

    def validate(self):
        """Return a list of problems with the configured values."""
        errors = []
        if self.max_loans_per_user < 0:
            errors.append("max_loans_per_user must be >= 0")
        if not MIN_LOAN_DAYS <= self.loan_period_days <= MAX_LOAN_DAYS:
            errors.append(f"loan_period_days must be between {MIN_LOAN_DAYS} and {MAX_LOAN_DAYS}")
        if self.max_extensions < 0:
            errors.append("max_extensions must be >= 0")
        if not MIN_EXTENSION_DAYS <= self.extension_days <= MAX_EXTENSION_DAYS:
            errors.append(f"extension_days must be between {MIN_EXTENSION_DAYS} and {MAX_EXTENSION_DAYS}")
        if self.fine_per_day < 0:
            errors.append("fine_per_day must be >= 0")
        if self.grace_period_days < 0:
            errors.append("grace_period_days must be >= 0")
        if self.max_fine_amount < 0:
            errors.append("max_fine_amount must be >= 0")
        return errors

    def with_overrides(self, overrides):
        """Return a copy with string or typed overrides applied.

        Unknown keys are ignored so that unrelated settings can share the
        same store.
        """
        known = {f.name for f in fields(self)}
        changes = {}
        for key, raw in overrides.items():
            if key not in known:
                continue
            changes[key] = _coerce(key, raw, bool if key == "allow_loans_with_fines" else int)
        return replace(self, **changes) if changes else self


def _coerce(key, raw, kind):
    if kind is bool:
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("true", "1", "yes")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting '{key}' must be an integer", {"value": raw})


def rules_from_env(environ=None, base=None):
    """Apply SHELFLEND_* environment overrides on top of base rules."""
    environ = os.environ if environ is None else environ
    base = base or LendingRules()
    overrides = {}
    for f in fields(LendingRules):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value is not None and value != "":
            overrides[f.name] = value
    return base.with_overrides(overrides)


def load_rules(db=None, environ=None):
    """Build the lending rules for this process.

    Precedence, lowest first: module defaults, SHELFLEND_* environment
    variables (a .env file is read when environ is not given), rows of the
    database settings table.

    Args:
        db: Optional DatabaseManager whose settings table holds overrides.
        environ: Optional mapping used instead of os.environ.

    Returns:
        A frozen LendingRules instance.
    """
    if environ is None:
        load_dotenv()
    rules = rules_from_env(environ)
    if db is not None:
        rules = rules.with_overrides(db.get_settings())
    return rules


def configure_logging(level=None):
    """Configure root logging from SHELFLEND_LOG_LEVEL (default INFO)."""
    level = level or os.getenv(ENV_PREFIX + "LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
