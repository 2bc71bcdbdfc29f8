class BetError(Exception):
    status_code = 500


class ValidationError(BetError):
    status_code = 400


class BettingClosedError(ValidationError):
    pass


class InsufficientBalanceError(ValidationError):
    pass


class DailyLimitReachedError(ValidationError):
    pass


class MatchNotFoundError(BetError):
    status_code = 404


class ProfileNotFoundError(BetError):
    status_code = 404


class MatchAlreadySettledError(BetError):
    status_code = 409


class StorageError(BetError):
    """Raised when the backing database cannot be read or written."""
    status_code = 503
