# Copyright 2016-2024, Pulumi Corporation.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .runtime.reconciler import ReconcileResult
    from .urn import ResourceIdentity


class RunError(Exception):
    """
    Can be used for terminating a program abruptly, but resulting in a clean exit rather than the usual
    verbose unhandled error logic which emits the source program text and complete stack trace.
    """


class CyclicDependencyError(RunError):
    """
    Raised before any handler runs when the props of the declared resources reference each other in a cycle.
    """

    cycle: List[str]
    """
    The URNs forming the cycle, in dependency order. The first URN is repeated at the end.
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"cyclic dependency detected: {' -> '.join(self.cycle)}")


class ContractViolationError(RunError):
    """
    A lifecycle handler did not uphold its contract, e.g. a delete returned without calling
    `ctx.destroy_self()`.
    """

    def __init__(self, urn: str, reason: str):
        self.urn = urn
        self.reason = reason
        super().__init__(f"resource '{urn}' violated its lifecycle contract: {reason}")


class ProviderError(RunError):
    """
    Wraps whatever a lifecycle handler raised. The original exception is available as `cause`.
    """

    def __init__(self, urn: str, phase: str, cause: BaseException):
        self.urn = urn
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase} of '{urn}' failed: {cause!r}")


class NotFoundError(Exception):
    """
    Raised by a lifecycle handler to signal that the remote object does not exist. During a delete this is
    treated as success; during an update the resource is created again.
    """


class OperationTimeoutError(Exception):
    def __init__(self, operation: str, waited: float):
        self.operation = operation
        self.waited = waited
        super().__init__(f"timeout waiting for {operation} to complete after {waited:.1f}s")


class OperationFailedError(Exception):
    def __init__(self, operation: str, status: Any):
        self.operation = operation
        self.status = status
        super().__init__(f"{operation} failed: {status!r}")


class RateLimitedError(Exception):
    """
    Can be raised by API clients to mark a failure as retryable by the rate limiter.
    """

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class RetryExhaustedError(RunError):
    def __init__(self, key: str, attempts: int, last_error: BaseException):
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"'{key}' call still rate limited after {attempts} attempts: {last_error}")


class ResourceNotFoundInStateError(RunError):
    def __init__(self, urn: str):
        self.urn = urn
        super().__init__(f"resource '{urn}' has no recorded state; run in 'up' mode before 'read'")


class StateVersionError(RunError):
    pass


class SecretEncryptionError(RunError):
    pass


class ResourceFailure:
    """
    ResourceFailure describes a single identity that did not converge during a run.
    """

    identity: "ResourceIdentity"
    phase: str
    error: BaseException

    def __init__(self, identity: "ResourceIdentity", phase: str, error: BaseException):
        self.identity = identity
        self.phase = phase
        self.error = error

    @property
    def urn(self) -> str:
        return self.identity.urn

    def __repr__(self):
        return f"ResourceFailure({self.urn!r}, {self.phase!r}, {self.error!r})"


class _MultiError(RunError):
    _verb = "run"

    def __init__(self, result: "ReconcileResult"):
        self.result = result
        self.failures: List[ResourceFailure] = list(result.failures)
        lines = [f"{self._verb} failed for {len(self.failures)} resource(s):"]
        for failure in self.failures:
            lines.append(f"  - {failure.urn} ({failure.phase}): {failure.error}")
        super().__init__("\n".join(lines))


class ApplyError(_MultiError):
    """
    Aggregates every failure of an apply. Identities that succeeded stay committed.
    """

    _verb = "apply"


class DestroyError(_MultiError):
    """
    Aggregates every failure of a destroy.
    """

    _verb = "destroy"
