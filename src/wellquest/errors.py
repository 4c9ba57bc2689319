"""Engine error taxonomy.

Duplicate awards and out-of-order check-ins are expected conditions and are
reported as structured results, not raised. Only store failures and unknown
users surface as exceptions.
"""

from __future__ import annotations


class PersistenceFailure(RuntimeError):
    """The store could not commit an award or streak update.

    The whole operation was rolled back and the caller must not assume any
    part of it succeeded. ``retryable`` is False when the store rejected the
    write itself (a constraint violation), so repeating it cannot succeed.
    """

    def __init__(self, operation: str, user_id: int, *, retryable: bool = True) -> None:
        super().__init__(f"{operation} for user {user_id} could not be committed")
        self.operation = operation
        self.user_id = user_id
        self.retryable = retryable


class UnknownUser(LookupError):
    """The authenticated user has no profile row."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} does not exist")
        self.user_id = user_id


class PopulationUnavailable(LookupError):
    """The candidate population for a ranking scope could not be resolved."""

    def __init__(self, scope: str, reason: str) -> None:
        super().__init__(f"No population for scope '{scope}': {reason}")
        self.scope = scope
        self.reason = reason
