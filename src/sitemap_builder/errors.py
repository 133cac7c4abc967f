"""Exceptions raised by the sitemap builder."""

from enum import Enum
from typing import List, Optional


class SitemapError(Exception):
    """Base class for all sitemap builder errors."""


class NormalizationError(SitemapError):
    """A raw URL could not be canonicalized."""

    kind = "normalization_error"

    def __init__(self, url: str, reason: str):
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class MalformedURLError(NormalizationError):
    """No scheme or host could be parsed from the URL."""

    kind = "malformed_url"


class UnsupportedSchemeError(NormalizationError):
    """The URL uses a scheme other than http or https."""

    kind = "unsupported_scheme"


class ValidationErrorKind(Enum):
    """Per-entry constraint violations."""
    URL_TOO_LONG = "url_too_long"
    PRIORITY_OUT_OF_RANGE = "priority_out_of_range"
    INVALID_FREQUENCY = "invalid_frequency"
    INVALID_TIMESTAMP = "invalid_timestamp"
    FUTURE_TIMESTAMP = "future_timestamp"


class ValidationIssue:
    """A single constraint violation found on an entry."""

    def __init__(self, kind: ValidationErrorKind, message: str):
        self.kind = kind
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationIssue):
            return NotImplemented
        return self.kind == other.kind and self.message == other.message

    def __repr__(self) -> str:
        return f"ValidationIssue({self.kind.value!r}, {self.message!r})"


class EntryValidationError(SitemapError):
    """An entry violates one or more constraints; all of them are listed."""

    def __init__(self, loc: str, issues: List[ValidationIssue]):
        summary = "; ".join(issue.message for issue in issues)
        super().__init__(f"Invalid entry {loc}: {summary}")
        self.loc = loc
        self.issues = issues

    @property
    def kinds(self) -> List[ValidationErrorKind]:
        return [issue.kind for issue in self.issues]


class PartitionError(SitemapError):
    """Entries could not be split into protocol-conformant files."""


class EntryExceedsMaxSizeError(PartitionError):
    """A single entry does not fit into an otherwise empty sitemap file."""

    kind = "entry_exceeds_max_size"

    def __init__(self, loc: str, size: int, limit: int):
        super().__init__(
            f"Entry {loc} needs {size} bytes in a sitemap file, limit is {limit}"
        )
        self.loc = loc
        self.size = size
        self.limit = limit


class IndexLimitExceededError(PartitionError):
    """More sitemap files than one index may reference."""

    def __init__(self, count: int, limit: int):
        super().__init__(f"{count} sitemap files exceed the index limit of {limit}")
        self.count = count
        self.limit = limit


class CollectorError(SitemapError):
    """The collector refused to accept more entries."""


class EntryCapExceededError(CollectorError):
    """The configured maximum number of unique entries was exceeded."""

    def __init__(self, cap: int, url: Optional[str] = None):
        super().__init__(f"Entry cap of {cap} unique URLs exceeded" + (f" at {url}" if url else ""))
        self.cap = cap
        self.url = url


class SinkWriteError(SitemapError):
    """Writing a document to the output sink failed."""

    def __init__(self, path: str, cause: Exception):
        super().__init__(f"Failed to write {path}: {cause}")
        self.path = path
        self.cause = cause


class GenerationError(SitemapError):
    """A generation run was aborted."""


class NoValidEntriesError(GenerationError):
    """Every entry supplied to the run was discarded."""

    def __init__(self, discarded: int):
        super().__init__(f"No valid entries to write ({discarded} discarded)")
        self.discarded = discarded


class GenerationCancelledError(GenerationError):
    """The run was cancelled before it finished."""

    def __init__(self, stage: str):
        super().__init__(f"Generation cancelled during {stage}")
        self.stage = stage
