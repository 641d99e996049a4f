"""
Standardised error handling for VideoDocs.
"""

from videodocs.core.constants import ErrorKind, RETRYABLE_KINDS, MAX_ERROR_MESSAGE_LEN
from videodocs.core.models import ErrorInfo


class JobError(Exception):
    """Raised when a pipeline stage encounters a known error condition."""

    def __init__(self, kind: str, message: str, code: str | None = None,
                 sub_kind: str | None = None, retryable: bool | None = None):
        self.kind = kind
        self.message = message
        self.code = code
        self.sub_kind = sub_kind
        # auto-detect retryable from kind if not explicitly set
        self.retryable = retryable if retryable is not None else (kind in RETRYABLE_KINDS)
        super().__init__(f"[{kind}] {message}")

    def to_error_info(self, raw_content=None) -> ErrorInfo:
        return ErrorInfo(
            kind=self.kind,
            message=self.message[:MAX_ERROR_MESSAGE_LEN],
            code=self.code,
            sub_kind=self.sub_kind,
            raw_content=raw_content,
        )


class SchemaValidationError(JobError):
    """Merged content does not conform to the output schema. Never retried."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(ErrorKind.VALIDATION, "; ".join(self.violations),
                         code="schema_validation_failed", retryable=False)


def is_retryable(kind: str) -> bool:
    return kind in RETRYABLE_KINDS
