"""
Error taxonomy and operation results for AI Memory MCP
Copyright 2025 Jurden Bruce

Internal layers raise MemorySystemError subclasses. MemoryService turns every
outcome into an OperationResult so the public operations never raise.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STATUS_OK = "ok"
STATUS_WARNING = "warning"
STATUS_NO_RESULTS = "no_results"
STATUS_ERROR = "error"


class MemorySystemError(Exception):
    """Base class for failures reported to callers"""
    kind = "error"
    default_stage = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage


class ValidationError(MemorySystemError):
    """Malformed input: empty content, out-of-range strength, unknown kind"""
    kind = "validation"
    default_stage = "validation"


class NotFoundError(MemorySystemError):
    """Referenced memory does not exist for this owner"""
    kind = "not_found"
    default_stage = "storage"


class UpstreamError(MemorySystemError):
    """Embedding or vector index failure; the whole operation may be retried"""
    kind = "upstream"
    default_stage = "upstream"


class StorageError(MemorySystemError):
    """Durable store read or write failure"""
    kind = "storage"
    default_stage = "storage"


@dataclass
class PartialConsistencyWarning:
    """Durable write succeeded but a later stage did not"""
    stage: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": "partial_consistency", "stage": self.stage, "message": self.message}


@dataclass
class OperationResult:
    status: str
    message: str
    data: Optional[Any] = None
    error_kind: Optional[str] = None
    stage: Optional[str] = None
    warnings: List[PartialConsistencyWarning] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != STATUS_ERROR

    @classmethod
    def ok(cls, message: str, data: Any = None,
           warnings: Optional[List[PartialConsistencyWarning]] = None) -> 'OperationResult':
        status = STATUS_WARNING if warnings else STATUS_OK
        return cls(status=status, message=message, data=data, warnings=list(warnings or []))

    @classmethod
    def no_results(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(status=STATUS_NO_RESULTS, message=message, data=data, error_kind="no_results")

    @classmethod
    def failure(cls, error: MemorySystemError) -> 'OperationResult':
        return cls(
            status=STATUS_ERROR,
            message=error.message,
            error_kind=error.kind,
            stage=error.stage,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "message": self.message,
            "error_kind": self.error_kind,
            "stage": self.stage,
            "data": self.data,
            "warnings": [w.to_dict() for w in self.warnings],
        }
