"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the access and approval engines (HTTP controllers, batch
sweeps, GraphQL resolvers) must react differently to "you may not do
this", "this request is already closed" and "someone else changed it
first".  Parsing message strings for that is fragile, so:

  1. Each failure kind has its own class; callers catch by type.
  2. Each class has a stable ``code`` suitable for API payloads.
  3. Details (request id, step, versions) are attributes, not text.

Example:
    try:
        service.act(request_id, actor, VoteAction.APPROVE)
    except PermissionDeniedError as e:
        api_response(403, code=e.code, step=e.step)
    except ConcurrencyConflictError:
        retry()

What is NOT an exception:
    - An unresolvable field or type mismatch inside a condition: the leaf
      evaluates to False (fail closed).
    - No matching access policy: a normal ``Decision.DENY``.
    - No matching approval flow: the selector returns ``None``.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ConfigurationError
    |   +-- InvalidConfigurationError
    |   +-- UnsatisfiableStepError
    |
    +-- ApprovalError
    |   +-- ApprovalRequestNotFoundError
    |   +-- ApprovalFlowNotFoundError
    |   +-- InvalidStateTransitionError
    |   +-- PermissionDeniedError
    |   +-- DuplicateVoteError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | INVALID_CONFIGURATION       | Loaded config failed validation
                | UNSATISFIABLE_STEP          | No approver resolves for a voting step
----------------|-----------------------------|-----------------------------------------
Approval        | APPROVAL_REQUEST_NOT_FOUND  | Request ID doesn't exist
                | APPROVAL_FLOW_NOT_FOUND     | Flow ID doesn't exist
                | INVALID_STATE_TRANSITION    | Action not allowed in current status
                | PERMISSION_DENIED           | Actor not an approver / gate closed
                | DUPLICATE_VOTE              | Same approver voted twice on a step
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONFLICT                    | Request version changed under us
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only vote

===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Configuration-related exceptions


class ConfigurationError(ApprovalKernelError):
    """Base exception for policy/flow configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidConfigurationError(ConfigurationError):
    """Configuration failed validation and must not be activated."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        summary = "; ".join(self.errors[:5])
        more = f" (+{len(self.errors) - 5} more)" if len(self.errors) > 5 else ""
        super().__init__(f"Invalid configuration: {summary}{more}")


class UnsatisfiableStepError(ConfigurationError):
    """
    A voting step resolved to zero approvers for the request's data.

    Every conditional approver branch evaluated false and no static
    approver remained.  The step is blocked, never silently skipped.
    """

    code: str = "UNSATISFIABLE_STEP"

    def __init__(self, flow_id: str, step: int, reason: str = ""):
        self.flow_id = flow_id
        self.step = step
        self.reason = reason
        msg = f"Step {step} of flow {flow_id} has no resolvable approver"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


# Approval-related exceptions


class ApprovalError(ApprovalKernelError):
    """Base exception for approval lifecycle errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalRequestNotFoundError(ApprovalError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class ApprovalFlowNotFoundError(ApprovalError):
    """Approval flow with given ID was not found."""

    code: str = "APPROVAL_FLOW_NOT_FOUND"

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Approval flow not found: {flow_id}")


class InvalidStateTransitionError(ApprovalError):
    """
    The requested action is not valid for the request's current state.

    Raised for any action on a terminal request (approved, rejected,
    cancelled, expired) and for out-of-order actions such as voting on
    a request nobody has started reviewing.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, request_id: str, current_status: str, action: str, reason: str = ""):
        self.request_id = request_id
        self.current_status = current_status
        self.action = action
        self.reason = reason
        msg = (
            f"Cannot {action} approval request {request_id} "
            f"in status '{current_status}'"
        )
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PermissionDeniedError(ApprovalError):
    """Actor is not permitted to perform the action on the request."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, request_id: str, actor_id: str, action: str, step: int | None = None, reason: str = ""):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        self.step = step
        self.reason = reason
        msg = f"Actor {actor_id} may not {action} approval request {request_id}"
        if step is not None:
            msg += f" at step {step}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DuplicateVoteError(ApprovalError):
    """
    The approver already voted on this step.

    Votes are append-only; corrections go through a Return/resubmit cycle.
    """

    code: str = "DUPLICATE_VOTE"

    def __init__(self, request_id: str, actor_id: str, step: int):
        self.request_id = request_id
        self.actor_id = actor_id
        self.step = step
        super().__init__(
            f"Actor {actor_id} already voted on step {step} of request {request_id}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    The request was modified by another transition since it was read.

    Callers may retry by re-reading the request and reapplying.
    """

    code: str = "CONFLICT"

    def __init__(self, request_id: str, expected_version: int, actual_version: int | None):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of approval request {request_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Immutability-related exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
