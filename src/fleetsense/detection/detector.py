"""Per-vehicle event detector."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from fleetsense.config import PipelineConfig
from fleetsense.detection.rules import DEFAULT_RULES, HistoryProvider, Rule, RuleContext
from fleetsense.exceptions import StateGapError
from fleetsense.models.event import Event
from fleetsense.models.position import PositionSample

_logger = logging.getLogger(__name__)


class EventDetector:
    """Evaluates every rule against ``(previous, sample)`` for one vehicle at a time.

    The detector owns the ``vehicle_id -> last evaluated sample`` lookup.
    Samples must be fed in timestamp order per vehicle; a sample that is
    not newer than the last evaluated one is ignored by :meth:`process`.

    Parameters
    ----------
    config : PipelineConfig
        Rule thresholds.
    history : callable or None
        ``(vehicle_id, start, end) -> samples`` used by rules that look
        further back than the previous sample (idle runs, trip summaries).
    rules : sequence of (name, rule)
        Rules in evaluation order.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        history: HistoryProvider | None = None,
        rules: Sequence[tuple[str, Rule]] = DEFAULT_RULES,
    ) -> None:
        self._config = config
        self._history = history
        self._rules = tuple(rules)
        self._last_samples: dict[str, PositionSample] = {}

    def last_sample(self, vehicle_id: str) -> PositionSample | None:
        return self._last_samples.get(vehicle_id)

    def seed(self, sample: PositionSample) -> None:
        """Set the last evaluated sample without running any rules."""
        current = self._last_samples.get(sample.vehicle_id)
        if current is None or sample.timestamp > current.timestamp:
            self._last_samples[sample.vehicle_id] = sample

    def evaluate(self, sample: PositionSample, previous: PositionSample | None) -> list[Event]:
        """Run every rule against an explicit ``(previous, sample)`` pair.

        One rule failing never stops the others.
        """
        ctx = RuleContext(sample=sample, previous=previous, config=self._config, history=self._history)
        events: list[Event] = []
        for name, rule in self._rules:
            try:
                events.extend(rule(ctx))
            except StateGapError:
                _logger.debug("Rule %s skipped for vehicle=%s: no previous sample", name, sample.vehicle_id)
            except Exception:
                _logger.warning(
                    "Rule %s failed for vehicle=%s ts=%s",
                    name,
                    sample.vehicle_id,
                    sample.timestamp,
                    exc_info=True,
                )
        return events

    def process(self, sample: PositionSample) -> list[Event]:
        """Evaluate *sample* against the vehicle's last sample and advance the lookup."""
        previous = self._last_samples.get(sample.vehicle_id)
        if previous is not None and sample.timestamp <= previous.timestamp:
            _logger.debug(
                "Late sample for vehicle=%s ts=%s (last evaluated %s); not re-evaluated",
                sample.vehicle_id,
                sample.timestamp,
                previous.timestamp,
            )
            return []
        events = self.evaluate(sample, previous)
        self._last_samples[sample.vehicle_id] = sample
        return events
