from __future__ import annotations


class BackendError(Exception):
    """Raised when the platform backend cannot produce a listener snapshot."""


class HandleAcquisitionFailed(BackendError):
    pass


class AllocationExhausted(BackendError):
    pass


class DecodeFailed(BackendError):
    pass


class FdInfoFailed(BackendError):
    """A single descriptor could not be queried. Handled inside the fd scan."""
