"""Error taxonomy for the ledger service.

Every error carries a stable ``kind`` string and the HTTP status the API
reports it with. User-correctable errors also subclass ``ValueError`` so
callers that only care about "bad input" can keep catching that.
"""


class LedgerError(Exception):
    kind = "ledger_error"
    status_code = 400


class ValidationError(LedgerError, ValueError):
    kind = "validation_error"
    status_code = 422


class InvalidAmount(ValidationError):
    kind = "invalid_amount"


class TransferMissingTarget(ValidationError):
    kind = "transfer_missing_target"


class ResolutionError(LedgerError, ValueError):
    kind = "resolution_error"


class AccountNotFound(ResolutionError):
    kind = "account_not_found"
    status_code = 404


class ConflictError(LedgerError, ValueError):
    kind = "conflict"
    status_code = 409


class UpstreamDegraded(LedgerError):
    kind = "upstream_degraded"
    status_code = 503


class PersistenceError(LedgerError):
    kind = "persistence_error"
    status_code = 500
