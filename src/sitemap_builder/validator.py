"""Per-entry constraint checks."""

import math
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple
from .config import DEFAULT_CLOCK_SKEW_SECONDS, MAX_URL_LENGTH
from .errors import EntryValidationError, ValidationErrorKind, ValidationIssue
from .types import ChangeFrequency, URLEntry
from .utils import parse_timestamp, to_utc, utc_now


def _coerce_changefreq(value: Any) -> ChangeFrequency:
    if isinstance(value, ChangeFrequency):
        return value
    if isinstance(value, str):
        return ChangeFrequency(value.strip().lower())
    raise ValueError(f"unsupported change frequency type {type(value).__name__}")


def _coerce_priority(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a priority")
    priority = float(value.strip() if isinstance(value, str) else value)
    if math.isnan(priority):
        raise ValueError("priority is NaN")
    return priority


class EntryValidator:
    """
    Checks one entry's location and metadata.

    All violations are reported together so a caller can show complete
    diagnostics for the entry.
    """

    def __init__(
        self,
        now: Optional[datetime] = None,
        clock_skew: timedelta = timedelta(seconds=DEFAULT_CLOCK_SKEW_SECONDS),
        max_url_length: int = MAX_URL_LENGTH
    ):
        self.now = to_utc(now) if now else utc_now()
        self.clock_skew = clock_skew
        self.max_url_length = max_url_length

    @property
    def latest_allowed(self) -> datetime:
        return self.now + self.clock_skew

    def _check(
        self,
        loc: str,
        lastmod: Any,
        changefreq: Any,
        priority: Any
    ) -> Tuple[List[ValidationIssue], URLEntry]:
        issues: List[ValidationIssue] = []
        entry = URLEntry(loc=loc)

        if len(loc) > self.max_url_length:
            issues.append(ValidationIssue(
                ValidationErrorKind.URL_TOO_LONG,
                f"URL is {len(loc)} characters, limit is {self.max_url_length}"
            ))

        if priority is not None:
            try:
                value = _coerce_priority(priority)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(
                    ValidationErrorKind.PRIORITY_OUT_OF_RANGE,
                    f"priority {priority!r} is not a number"
                ))
            else:
                if 0.0 <= value <= 1.0:
                    entry.priority = value
                else:
                    issues.append(ValidationIssue(
                        ValidationErrorKind.PRIORITY_OUT_OF_RANGE,
                        f"priority {value} is outside [0.0, 1.0]"
                    ))

        if changefreq is not None:
            try:
                entry.changefreq = _coerce_changefreq(changefreq)
            except ValueError:
                issues.append(ValidationIssue(
                    ValidationErrorKind.INVALID_FREQUENCY,
                    f"change frequency {changefreq!r} is not one of "
                    f"{', '.join(f.value for f in ChangeFrequency)}"
                ))

        if lastmod is not None:
            try:
                timestamp = parse_timestamp(lastmod)
            except (TypeError, ValueError, OverflowError):
                issues.append(ValidationIssue(
                    ValidationErrorKind.INVALID_TIMESTAMP,
                    f"lastmod {lastmod!r} is not a valid timestamp"
                ))
            else:
                if timestamp > self.latest_allowed:
                    issues.append(ValidationIssue(
                        ValidationErrorKind.FUTURE_TIMESTAMP,
                        f"lastmod {timestamp.isoformat()} is later than "
                        f"{self.latest_allowed.isoformat()}"
                    ))
                else:
                    entry.lastmod = timestamp

        return issues, entry

    def collect_issues(
        self,
        loc: str,
        lastmod: Any = None,
        changefreq: Any = None,
        priority: Any = None
    ) -> List[ValidationIssue]:
        """Return every violation found on the entry; empty means valid."""
        issues, _ = self._check(loc, lastmod, changefreq, priority)
        return issues

    def validate(
        self,
        loc: str,
        lastmod: Any = None,
        changefreq: Any = None,
        priority: Any = None
    ) -> URLEntry:
        """
        Validate an entry whose location is already normalized.

        Returns the typed entry, or raises EntryValidationError listing every
        violation.
        """
        issues, entry = self._check(loc, lastmod, changefreq, priority)
        if issues:
            raise EntryValidationError(loc, issues)
        return entry
