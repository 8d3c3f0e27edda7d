# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Exception hierarchy for the iLQR/DDP passes.

Recoverable numerical trouble (an indefinite control-control block, a
non-finite rollout, an exhausted line search) is handled inside the passes.
Only the failures below reach the caller.
"""

from __future__ import annotations

from ddpax.core.types import ErrorCode


class DDPError(Exception):
    """Base exception class for ddpax errors."""

    def __init__(self, message: str, error_code: ErrorCode) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    def __str__(self) -> str:
        return f"DDP Error {self.error_code.value}: {self.message}"

    @property
    def description(self) -> str:
        """Short description of the error code."""
        return _error_code_to_string(self.error_code)


class DimensionError(DDPError):
    """Inconsistent array shapes between trajectory and problem data."""

    def __init__(
        self, message: str, error_code: ErrorCode = ErrorCode.DIMENSION_MISMATCH
    ) -> None:
        super().__init__(message, error_code)


class BackwardPassError(DDPError):
    """The backward sweep could not be completed within the restart cap."""

    def __init__(
        self,
        message: str,
        restarts: int,
        regularization: float,
        error_code: ErrorCode = ErrorCode.BACKWARD_PASS_FAILED,
    ) -> None:
        super().__init__(message, error_code)
        self.restarts = restarts
        self.regularization = regularization


class FactorizationError(DDPError):
    """A Cholesky factor was requested for a matrix that is not positive definite."""

    def __init__(
        self, message: str, error_code: ErrorCode = ErrorCode.CHOLESKY_FAILED
    ) -> None:
        super().__init__(message, error_code)


class ConfigurationError(DDPError, ValueError):
    """An option value outside its valid range."""

    def __init__(
        self, message: str, error_code: ErrorCode = ErrorCode.INVALID_CONFIGURATION
    ) -> None:
        super().__init__(message, error_code)


def _error_code_to_string(error_code: ErrorCode) -> str:
    """Convert an error code to a short description."""
    error_messages = {
        ErrorCode.DIMENSION_MISMATCH: "dimension mismatch",
        ErrorCode.BACKWARD_PASS_FAILED: "Backward pass failed. Try increasing regularization",
        ErrorCode.CHOLESKY_FAILED: "Cholesky factorization failed",
        ErrorCode.INVALID_CONFIGURATION: "invalid configuration",
    }
    return error_messages.get(error_code, "unknown error")
