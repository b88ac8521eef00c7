class LedgerServiceError(Exception):
    pass


class ValidationError(LedgerServiceError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class NotOpenError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    pass


class UnauthorizedActionError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class AlreadyDeclaredError(InvalidStateTransitionError):
    """The result was settled earlier; nothing was changed by this call."""


class FatalLedgerInconsistencyError(LedgerServiceError):
    """A balance mutation and its ledger entry did not land together.

    The affected user's ledger stays frozen until it is reconciled.
    """

    def __init__(self, user_id, message: str, report=None):
        super().__init__(message)
        self.user_id = user_id
        self.report = report
