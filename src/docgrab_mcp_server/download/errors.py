from __future__ import annotations


class AcquisitionError(RuntimeError):
    pass


class FetchFailed(AcquisitionError):
    """Network-level failure on the direct path (DNS, reset, TLS, timeout)."""


class BlockedError(AcquisitionError):
    """The `direct` strategy hit a block signal and browser fallback was not allowed."""


class BrowserFetchFailed(AcquisitionError):
    """Navigation failed, the page crashed, or nothing could be rendered."""


class BrowserLaunchFailed(BrowserFetchFailed):
    pass


class AcquisitionTimeout(AcquisitionError, TimeoutError):
    pass


class DirectFetchTimeout(FetchFailed, AcquisitionTimeout):
    pass


class BrowserFetchTimeout(BrowserFetchFailed, AcquisitionTimeout):
    pass


class PayloadTooLarge(AcquisitionError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Document exceeds the maximum file size of {limit} bytes.")
        self.limit = limit
