class BillingError(Exception):
    """Base for failures while handling a billing event or billing request."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class VerificationError(BillingError):
    status_code = 400


class ConfigurationError(BillingError):
    status_code = 500


class PersistenceError(BillingError):
    status_code = 500


class BillingProviderError(BillingError):
    status_code = 502
