"""impactscope error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Input (missing source tree, missing export)
- 4xxx: Store integrity
- 5xxx: Fact extraction
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Input (3xxx)
    INPUT_ROOT_NOT_FOUND = 3001
    INPUT_SUBTREE_NOT_FOUND = 3002
    INPUT_EXPORT_NOT_FOUND = 3003
    INPUT_EXPORT_INVALID = 3004

    # Store (4xxx)
    STORE_FOREIGN_KEY = 4001
    STORE_DUPLICATE_KEY = 4002
    STORE_FIELD_LOCKED = 4003
    STORE_ROW_NOT_FOUND = 4004
    STORE_INVARIANT_FAILED = 4005

    # Facts (5xxx)
    FACT_EXTRACTION_FAILED = 5001
    FACT_MALFORMED = 5002
    FACT_READ_FAILED = 5003

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class ImpactScopeError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(ImpactScopeError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class MissingInputError(ImpactScopeError):
    """The source tree or an export directory is absent. Raised before any mutation."""

    @classmethod
    def root_not_found(cls, path: str) -> "MissingInputError":
        return cls(
            code=ErrorCode.INPUT_ROOT_NOT_FOUND,
            message=f"Repository root not found: {path}",
            details={"path": path},
        )

    @classmethod
    def subtree_not_found(cls, path: str, expected: str) -> "MissingInputError":
        return cls(
            code=ErrorCode.INPUT_SUBTREE_NOT_FOUND,
            message=f"Expected '{expected}' under {path}; pass --repo pointing at the repository root",
            details={"path": path, "expected": expected},
        )

    @classmethod
    def export_not_found(cls, path: str) -> "MissingInputError":
        return cls(
            code=ErrorCode.INPUT_EXPORT_NOT_FOUND,
            message=f"No export found at {path} (manifest.json missing)",
            details={"path": path},
        )

    @classmethod
    def export_invalid(cls, path: str, reason: str) -> "MissingInputError":
        return cls(
            code=ErrorCode.INPUT_EXPORT_INVALID,
            message=f"Export at {path} cannot be imported: {reason}",
            details={"path": path, "reason": reason},
        )


class IntegrityViolation(ImpactScopeError):
    """A write would break referential integrity. Always a programming error."""

    @classmethod
    def foreign_key(cls, table: str, column: str, value: Any) -> "IntegrityViolation":
        return cls(
            code=ErrorCode.STORE_FOREIGN_KEY,
            message=f"{table}.{column} references missing row {value}",
            details={"table": table, "column": column, "value": value},
        )

    @classmethod
    def duplicate_key(cls, table: str, key: tuple[Any, ...]) -> "IntegrityViolation":
        return cls(
            code=ErrorCode.STORE_DUPLICATE_KEY,
            message=f"{table} already holds natural key {key!r}",
            details={"table": table, "key": list(key)},
        )

    @classmethod
    def field_locked(cls, table: str, fields: list[str]) -> "IntegrityViolation":
        return cls(
            code=ErrorCode.STORE_FIELD_LOCKED,
            message=f"{table} fields are not reclassifiable: {', '.join(sorted(fields))}",
            details={"table": table, "fields": sorted(fields)},
        )

    @classmethod
    def row_not_found(cls, table: str, row_id: int) -> "IntegrityViolation":
        return cls(
            code=ErrorCode.STORE_ROW_NOT_FOUND,
            message=f"{table} has no row with id {row_id}",
            details={"table": table, "id": row_id},
        )

    @classmethod
    def invariant_failed(cls, summary: str, issues: list[str]) -> "IntegrityViolation":
        return cls(
            code=ErrorCode.STORE_INVARIANT_FAILED,
            message=f"Graph invariants failed: {summary}",
            details={"issues": issues},
        )


class FactError(ImpactScopeError):
    """Structural facts for one file are unavailable or malformed."""

    @classmethod
    def extraction_failed(cls, path: str, reason: str) -> "FactError":
        return cls(
            code=ErrorCode.FACT_EXTRACTION_FAILED,
            message=f"Fact extraction failed for {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def malformed(cls, path: str, reason: str) -> "FactError":
        return cls(
            code=ErrorCode.FACT_MALFORMED,
            message=f"Malformed facts for {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def read_failed(cls, path: str, reason: str) -> "FactError":
        return cls(
            code=ErrorCode.FACT_READ_FAILED,
            message=f"Cannot read {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @property
    def path(self) -> str:
        return str(self.details.get("path", ""))


class InternalError(ImpactScopeError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
