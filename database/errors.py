class StoreError(Exception):
    """Base class for expected failures raised by the progress/credential stores."""


class DuplicateAccount(StoreError):
    pass


class EmailNotVerified(StoreError):
    pass


class InvalidPin(StoreError):
    pass


class NotFound(StoreError):
    pass


class BackendUnavailable(StoreError):
    """Network or storage layer failure surfaced by the identity provider client."""


class PermissionDenied(StoreError):
    pass


class NotAuthenticated(StoreError):
    pass


class UnsupportedOperation(StoreError):
    pass


class WeakPassword(StoreError):
    pass
