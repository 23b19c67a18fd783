"""Exceptions raised by the China Unicom domain."""


class UnicomError(Exception):
    """Base class for every domain error."""


class FetchError(UnicomError):
    """Usage data could not be fetched."""


class AuthExpiredError(FetchError):
    """The session cookie was rejected by the vendor (code 999998)."""


class TransientFetchError(FetchError):
    """Network or vendor failure unrelated to authentication."""


class ReauthenticationError(UnicomError):
    """Exchanging the refresh token for a new cookie failed."""


class StoreError(UnicomError):
    """A read or write against the snapshot store failed."""


class AlreadyExistsError(StoreError):
    """Insert hit an existing primary key."""


class NotRegisteredError(UnicomError):
    """The user has no config record."""


class ValidationError(UnicomError):
    """A config value is outside its allowed range."""


class DeliveryError(UnicomError):
    """A message could not be delivered to the user."""
