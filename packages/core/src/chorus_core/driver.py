"""Provider driver: one provider run as a uniform event stream.

drive() yields zero or more StepEvent with strictly increasing ``seq`` and
then exactly one terminal event: Completed, Failed or Cancelled. Nothing is
yielded after the terminal event.

Cancellation is read from the injected event, never from error text. It is
checked before the provider starts, before each step is forwarded, when the
provider raises and after it returns. Once the event is set the driver stops
forwarding steps and reports Cancelled, even if the provider went on to
produce a result.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Union

from chorus_core.models import ErrorInfo, Outcome, Step

if TYPE_CHECKING:
    from chorus_core.providers.base import BaseProvider, ExecutionParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepEvent:
    seq: int
    step: Step


@dataclass(frozen=True)
class Completed:
    outcome: Outcome


@dataclass(frozen=True)
class Failed:
    error: ErrorInfo


@dataclass(frozen=True)
class Cancelled:
    pass


TerminalEvent = Union[Completed, Failed, Cancelled]
DriverEvent = Union[StepEvent, Completed, Failed, Cancelled]


class ProviderDriver:
    def __init__(self, provider: BaseProvider):
        self.provider = provider

    def drive(self, params: ExecutionParams, cancel_event: threading.Event) -> Iterator[DriverEvent]:
        if cancel_event.is_set():
            yield Cancelled()
            return

        run = self.provider.execute(params, cancel_event)
        seq = 0
        outcome = None
        try:
            while True:
                try:
                    step = next(run)
                except StopIteration as stop:
                    outcome = stop.value
                    break
                if cancel_event.is_set():
                    run.close()
                    logger.info("Run for %s cancelled after %d step(s)", params.key, seq)
                    yield Cancelled()
                    return
                seq += 1
                yield StepEvent(seq=seq, step=step)
        except Exception as e:
            if cancel_event.is_set():
                logger.info("Run for %s cancelled (provider stopped with %s)", params.key, type(e).__name__)
                yield Cancelled()
                return
            logger.error("Provider run for %s failed: %s", params.key, e)
            yield Failed(ErrorInfo.from_exception(e))
            return

        if cancel_event.is_set():
            yield Cancelled()
        elif outcome is None:
            yield Failed(ErrorInfo("Provider finished without producing a result", "ProviderError"))
        else:
            yield Completed(outcome)
