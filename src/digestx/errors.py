"""digestx error hierarchy.

Only these errors ever escape a digest or apply call. Exceptions raised by
watch functions, listeners and queued tasks are reported through the tree's
exception handler instead (see digestx.scope.set_exception_handler).
"""


class DigestError(Exception):
    """Base error for all digestx operations."""


class PhaseConflictError(DigestError):
    """A digest or apply was started while another phase is active in the tree."""

    def __init__(self, phase: str) -> None:
        super().__init__(f"{phase} already in progress")
        self.phase = phase


class DigestLimitError(DigestError):
    """The digest loop did not stabilize within its iteration budget."""

    def __init__(self, ttl: int) -> None:
        super().__init__(f"{ttl} digest iterations reached")
        self.ttl = ttl
