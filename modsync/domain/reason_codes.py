"""Canonical installer reason-code registry.

Values are persisted in run summaries and printed in console notices; treat them
as a stable contract once released.
"""

from __future__ import annotations

from typing import Final

# Sentinel used when an outcome carries no warning or failure reason.
REASON_CODE_NONE: Final[str] = "none"

# Module-scoped failures.
SOURCE_UNAVAILABLE: Final[str] = "SOURCE-UNAVAILABLE"
SCHEMA_PARSE_ERROR: Final[str] = "SCHEMA-PARSE-ERROR"
CONFIG_VALIDATION_FAILED: Final[str] = "CONFIG-VALIDATION-FAILED"
COMPILE_ERROR: Final[str] = "COMPILE-ERROR"
WRITE_FAILED: Final[str] = "WRITE-FAILED"

# Warnings (run continues).
NETWORK_FETCH_FAILURE: Final[str] = "NETWORK-FETCH-FAILURE"
DEPENDENCY_INSTALL_FAILED: Final[str] = "DEPENDENCY-INSTALL-FAILED"
VENDOR_SOURCE_MISSING: Final[str] = "VENDOR-SOURCE-MISSING"
MANIFEST_DEGRADED: Final[str] = "MANIFEST-DEGRADED"
PLACEHOLDER_CYCLE: Final[str] = "PLACEHOLDER-CYCLE"
CUSTOM_CACHE_INTEGRITY: Final[str] = "CUSTOM-CACHE-INTEGRITY"
EXISTING_CONFIG_UNREADABLE: Final[str] = "EXISTING-CONFIG-UNREADABLE"

# Informational: the PreserveUserEdit outcome.
WRITE_CONFLICT: Final[str] = "WRITE-CONFLICT"

FAILURE_CODES: Final[frozenset[str]] = frozenset(
    {
        SOURCE_UNAVAILABLE,
        SCHEMA_PARSE_ERROR,
        CONFIG_VALIDATION_FAILED,
        COMPILE_ERROR,
        WRITE_FAILED,
    }
)
