from __future__ import annotations


class FeedQualityError(RuntimeError):
    """Base class for every error raised by feedquality."""


class ConfigError(FeedQualityError):
    """Raised when the run configuration is missing or invalid."""


class SourceError(FeedQualityError):
    """A feed source could not contribute feeds to the run."""


class MalformedRowError(SourceError):
    """A manifest row cannot be turned into a feed descriptor."""


class AuthError(SourceError):
    """The catalog API rejected the configured key."""


class DownloadError(FeedQualityError):
    """Fetching one feed file failed after all attempts."""


class ValidationUnavailableError(FeedQualityError):
    """The validator produced no diagnostics for a feed."""


class AnalysisIOError(FeedQualityError):
    """A diagnostics file could not be read or parsed."""


class ExportError(FeedQualityError):
    """Writing one report format failed."""
