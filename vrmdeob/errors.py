"""Fatal error kinds.

Every step of the pipeline is single-shot: the first error propagates to the
top level and aborts the run.
"""

from __future__ import annotations


class DeobError(RuntimeError):
    pass


class EnvelopeError(DeobError):
    """Bad key/IV, truncated body or decompressed size mismatch."""


class NetworkError(DeobError):
    pass


class UnknownSchemeError(DeobError):
    """Timestamp key from the document is not in the derived seed map."""


class UnsupportedVersionError(DeobError):
    pass


class TranscodeError(DeobError):
    pass


class ProtocolMisuseError(DeobError):
    """A consume-and-remove vendor block reached the write pass."""


class GlbReadError(DeobError):
    pass


class GeneratorError(DeobError):
    """External generator returned less data than requested."""
