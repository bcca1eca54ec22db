"""Module-scoped installer exceptions.

Every exception carries a reason code so the orchestrator can record the
outcome without inspecting message text.
"""

from __future__ import annotations

from modsync.domain.reason_codes import (
    COMPILE_ERROR,
    CONFIG_VALIDATION_FAILED,
    NETWORK_FETCH_FAILURE,
    SCHEMA_PARSE_ERROR,
    SOURCE_UNAVAILABLE,
    WRITE_FAILED,
)


class InstallError(RuntimeError):
    reason_code = "INSTALL-ERROR"

    def __init__(self, detail: str, *, module_id: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.module_id = module_id

    def __str__(self) -> str:
        if self.module_id:
            return f"{self.reason_code}: [{self.module_id}] {self.detail}"
        return f"{self.reason_code}: {self.detail}"


class SourceUnavailable(InstallError):
    reason_code = SOURCE_UNAVAILABLE


class ModuleNotFound(SourceUnavailable):
    """No resolver tier knows the requested module id."""


class SchemaParseError(InstallError):
    reason_code = SCHEMA_PARSE_ERROR


class ConfigValidationError(InstallError):
    reason_code = CONFIG_VALIDATION_FAILED


class NetworkFetchFailure(InstallError):
    reason_code = NETWORK_FETCH_FAILURE


class CompileError(InstallError):
    reason_code = COMPILE_ERROR


class WriteFailed(InstallError):
    reason_code = WRITE_FAILED


class PromptAborted(Exception):
    """Raised by a prompter when the user cancels an interactive question."""
