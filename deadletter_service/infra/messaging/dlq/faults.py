"""Failure classification for message processing errors.

Every processing error is reduced to a FaultCategory, a closed set of fault
families, and each category maps to one FailureKind that drives the retry
decision:

    ==================  =====================================================
    FailureKind         FaultCategory
    ==================  =====================================================
    PERMANENT           ARGUMENT, FORMAT, INVALID_STATE, BUSINESS_RULE,
                        DOMAIN, VALIDATION
    TRANSIENT           TIMEOUT, HTTP_TRANSPORT, DATABASE_TRANSPORT, SOCKET, IO
    CRITICAL            OUT_OF_MEMORY, STACK_OVERFLOW
    UNKNOWN             UNCATEGORIZED
    ==================  =====================================================

Consumers tag errors explicitly by raising ProcessingFault. Untagged
exceptions are categorized by walking their MRO, first against the
application registry (register_fault_category) and then against the
built-in table. Critical errors are recognised before anything else.
"""

from __future__ import annotations

import json
import threading
from enum import StrEnum
from typing import Any

import httpx
from pydantic import ValidationError


class FailureKind(StrEnum):
    """How a failure should influence retry decisions."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class FaultCategory(StrEnum):
    """Closed set of fault families a processing error can belong to."""

    # Permanent: retrying cannot fix the input or the state.
    ARGUMENT = "argument"
    FORMAT = "format"
    INVALID_STATE = "invalid_state"
    BUSINESS_RULE = "business_rule"
    DOMAIN = "domain"
    VALIDATION = "validation"
    # Transient: the dependency may recover.
    TIMEOUT = "timeout"
    HTTP_TRANSPORT = "http_transport"
    DATABASE_TRANSPORT = "database_transport"
    SOCKET = "socket"
    IO = "io"
    # Critical: the process itself is in trouble.
    OUT_OF_MEMORY = "out_of_memory"
    STACK_OVERFLOW = "stack_overflow"
    UNCATEGORIZED = "uncategorized"

    @property
    def kind(self) -> FailureKind:
        """FailureKind this category maps to."""
        return _CATEGORY_KINDS[self]


_CATEGORY_KINDS: dict[FaultCategory, FailureKind] = {
    FaultCategory.ARGUMENT: FailureKind.PERMANENT,
    FaultCategory.FORMAT: FailureKind.PERMANENT,
    FaultCategory.INVALID_STATE: FailureKind.PERMANENT,
    FaultCategory.BUSINESS_RULE: FailureKind.PERMANENT,
    FaultCategory.DOMAIN: FailureKind.PERMANENT,
    FaultCategory.VALIDATION: FailureKind.PERMANENT,
    FaultCategory.TIMEOUT: FailureKind.TRANSIENT,
    FaultCategory.HTTP_TRANSPORT: FailureKind.TRANSIENT,
    FaultCategory.DATABASE_TRANSPORT: FailureKind.TRANSIENT,
    FaultCategory.SOCKET: FailureKind.TRANSIENT,
    FaultCategory.IO: FailureKind.TRANSIENT,
    FaultCategory.OUT_OF_MEMORY: FailureKind.CRITICAL,
    FaultCategory.STACK_OVERFLOW: FailureKind.CRITICAL,
    FaultCategory.UNCATEGORIZED: FailureKind.UNKNOWN,
}


class ProcessingFault(Exception):
    """Processing error tagged with its fault category at the point of capture.

    Example:
        if order.total < 0:
            raise ProcessingFault(
                "Order total cannot be negative",
                category=FaultCategory.BUSINESS_RULE,
            )
    """

    def __init__(
        self,
        message: str,
        category: FaultCategory = FaultCategory.UNCATEGORIZED,
    ) -> None:
        super().__init__(message)
        self.category = category

    @property
    def kind(self) -> FailureKind:
        return self.category.kind


# ─────────────────────────────────────────────────────
# Built-in mapping
# ─────────────────────────────────────────────────────

_CRITICAL_TYPES: tuple[tuple[type[BaseException], FaultCategory], ...] = (
    (MemoryError, FaultCategory.OUT_OF_MEMORY),
    (RecursionError, FaultCategory.STACK_OVERFLOW),
)

# Looked up per class while walking the MRO, so the most specific entry wins
# (TimeoutError before OSError, JSONDecodeError before ValueError).
_BUILTIN_CATEGORIES: dict[type[BaseException], FaultCategory] = {
    # Transient
    TimeoutError: FaultCategory.TIMEOUT,
    httpx.TransportError: FaultCategory.HTTP_TRANSPORT,
    ConnectionError: FaultCategory.SOCKET,
    OSError: FaultCategory.IO,
    # Permanent
    json.JSONDecodeError: FaultCategory.FORMAT,
    UnicodeError: FaultCategory.FORMAT,
    ValidationError: FaultCategory.VALIDATION,
    ValueError: FaultCategory.ARGUMENT,
    TypeError: FaultCategory.ARGUMENT,
    LookupError: FaultCategory.INVALID_STATE,
    AttributeError: FaultCategory.INVALID_STATE,
    AssertionError: FaultCategory.INVALID_STATE,
    NotImplementedError: FaultCategory.INVALID_STATE,
    RuntimeError: FaultCategory.INVALID_STATE,
}

# ─────────────────────────────────────────────────────
# Thread-safe application registry
# ─────────────────────────────────────────────────────

_registered_categories: dict[type[BaseException], FaultCategory] = {}
_lock = threading.Lock()


def register_fault_category(
    category: FaultCategory,
    *exception_classes: type[BaseException],
) -> None:
    """Map application exception classes to a fault category.

    Registered classes take precedence over the built-in table, so a driver
    exception can be marked transient even if it derives from ValueError.

    Example:
        register_fault_category(FaultCategory.DATABASE_TRANSPORT, asyncpg.PostgresConnectionError)
        register_fault_category(FaultCategory.BUSINESS_RULE, InsufficientFundsError)
    """
    with _lock:
        for exc_class in exception_classes:
            _registered_categories[exc_class] = category


def unregister_fault_category(*exception_classes: type[BaseException]) -> None:
    """Remove exception classes from the application registry."""
    with _lock:
        for exc_class in exception_classes:
            _registered_categories.pop(exc_class, None)


def clear_registered_faults() -> None:
    """Clear the application registry (built-in mapping is unaffected)."""
    with _lock:
        _registered_categories.clear()


def fault_category(error: BaseException) -> FaultCategory:
    """Determine the fault category of an error."""
    for exc_type, category in _CRITICAL_TYPES:
        if isinstance(error, exc_type):
            return category

    if isinstance(error, ProcessingFault):
        return error.category

    mro = type(error).__mro__
    with _lock:
        registered = dict(_registered_categories)
    for table in (registered, _BUILTIN_CATEGORIES):
        for cls in mro:
            category = table.get(cls)
            if category is not None:
                return category

    return FaultCategory.UNCATEGORIZED


def classify(error: BaseException) -> FailureKind:
    """Classify an error as transient, permanent, critical or unknown.

    Example:
        assert classify(TimeoutError("broker slow")) is FailureKind.TRANSIENT
        assert classify(ValueError("bad input")) is FailureKind.PERMANENT
        assert classify(MemoryError()) is FailureKind.CRITICAL
    """
    return fault_category(error).kind


def qualified_name(obj: Any) -> str:
    """Fully-qualified type name of an object (or of a class).

    Builtins are reported by their bare name (``ValueError``, ``dict``).
    """
    cls = obj if isinstance(obj, type) else type(obj)
    module = cls.__module__
    if module == "builtins":
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


__all__ = [
    "FailureKind",
    "FaultCategory",
    "ProcessingFault",
    "classify",
    "clear_registered_faults",
    "fault_category",
    "qualified_name",
    "register_fault_category",
    "unregister_fault_category",
]
