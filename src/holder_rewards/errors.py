from __future__ import annotations


class RewardsError(Exception):
    """Base class for every error the rewards engine raises on purpose."""


class ConfigurationError(RewardsError):
    """Missing price or configuration. Nothing downstream may proceed."""


class ConflictError(RewardsError):
    pass


class ForbiddenError(RewardsError):
    pass


class NoEligibleEntriesError(RewardsError):
    pass


class LimitExceededError(RewardsError):
    """Fee amount above the safety ceiling. Needs manual review, not a retry."""


class VerificationInconclusiveError(RewardsError):
    """A fee could not be verified (history unavailable). Not a hard failure."""


class RpcError(RewardsError):
    pass


class AuditMismatchError(RewardsError):
    pass
