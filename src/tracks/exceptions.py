"""
Custom exception classes.

All tracks-specific exceptions inherit from TracksError.
"""


class TracksError(Exception):
    """Base exception for all tracks errors."""

    pass


class ConfigError(TracksError):
    """Configuration loading, validation or event filter error."""

    pass


class ExtractionError(TracksError):
    """Audio decoding or feature extraction error."""

    pass


class CodecError(TracksError):
    """Malformed or unknown envelope on the wire."""

    pass


class TransportError(TracksError):
    """Socket could not be set up for sending or receiving."""

    pass


class AnalysisCancelled(TracksError):
    """Cancellation was requested before analysis finished."""

    pass
