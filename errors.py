"""Exception taxonomy for the voting pipeline."""


class VotingError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationError(VotingError):
    """Malformed key, ballot, share or block structure."""


class DuplicateAuthorizationError(VotingError):
    """The authority already signed for this voter in this election."""


class DuplicateVoteError(VotingError):
    """A key image was seen before: the signer already voted."""


class CryptoFailureError(VotingError):
    """A bounded cryptographic search or self-check failed."""


class ConsensusConflictError(VotingError):
    """Two competing valid chains of equal length; operator must resolve."""


class ThresholdInsufficientError(VotingError):
    """Fewer than ``t`` distinct key shares were available."""


class NotAuthorityError(VotingError):
    """Block production attempted on a node without authority status."""
