"""Error taxonomy shared by the formula, badge and settlement layers.

Formula functions never raise. Everything that touches the store raises one
of these, so callers can tell "already done" apart from "failed, retry".
"""

from __future__ import annotations


class CredoError(Exception):
    """Base class for engine errors."""


class ValidationError(CredoError):
    """Input rejected before any mutation was attempted."""


class NotFound(CredoError):
    """No credibility account or statistics row exists for the user."""


class ConflictNoop(CredoError):
    """Target state already reached (badge earned, week settled).

    Not surfaced as an error by the public operations: they report it as
    ``granted=False`` / ``already_settled=True``.
    """


class StoreUnavailable(CredoError):
    """The backing store call failed. Safe to retry."""


class FatalInconsistency(CredoError):
    """A settlement claim could not be matched by its credibility delta.

    Indicates a broken atomicity assumption; never retried automatically.
    """
