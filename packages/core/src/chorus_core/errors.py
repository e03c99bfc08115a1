"""Exception taxonomy.

Admission and throttle errors are raised synchronously to whoever issued the
command. Provider failures never surface here as exceptions to clients: the
registry turns them into a ``failed`` job and a ``job:error`` event.
"""

from __future__ import annotations


class ChorusError(Exception):
    """Base class for errors reported back to a client as a failed command."""


class AdmissionConflict(ChorusError):
    """A command could not be admitted because of existing job state."""


class AlreadyActive(AdmissionConflict):
    def __init__(self, key):
        self.key = key
        super().__init__(f"A job for {key} is already queued or running.")


class DispatchError(ChorusError):
    """The job could not be handed to the worker pool. No job was created."""


class EntityNotFound(ChorusError):
    pass


class ProviderError(ChorusError):
    """The AI provider failed to produce a usable result."""


class ThrottleDenied(ChorusError):
    """A command was rejected by the ingress rate limiter.

    ``detail`` carries the limiter state the client needs to back off:
    ``limit``, ``isBlocked``, ``totalHits``, ``timeToExpire`` and
    ``timeToBlockExpire`` (milliseconds).
    """

    def __init__(self, detail: dict):
        self.detail = detail
        super().__init__(
            f"Too many requests: {detail.get('totalHits')} hits over a limit of {detail.get('limit')}. "
            f"Retry in {detail.get('timeToBlockExpire')}ms."
        )
