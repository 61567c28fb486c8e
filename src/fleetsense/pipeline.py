"""High-level async telemetry-to-insight pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any, TypeVar

from fleetsense._mqtt import PositionMqttRuntime
from fleetsense.config import PipelineConfig
from fleetsense.detection.detector import EventDetector
from fleetsense.exceptions import ComputationError, InputError, StorageError
from fleetsense.health.features import compute_daily_features, day_window
from fleetsense.health.scoring import score_daily_health
from fleetsense.ingestion.buffer import ReorderBuffer
from fleetsense.locations.clusterer import LocationClusterer
from fleetsense.locations.dwell import find_dwell_candidates
from fleetsense.models.event import Event
from fleetsense.models.health import DailyHealthScore, HealthSweepResult, SweepStatus
from fleetsense.models.location import LearnedLocation, LocationContext
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import Trip
from fleetsense.state.policy import cooldown_for
from fleetsense.state.positions import PositionTimeline
from fleetsense.state.store import InsightStore
from fleetsense.trips.strategies import TripSegmentationStrategy, default_strategies

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InsightPipeline:
    """Runs detection, segmentation, clustering and scoring over one store.

    Usage::

        async with InsightPipeline(PipelineConfig.from_env()) as pipeline:
            await pipeline.ingest(sample)
            await pipeline.segment_trips("VEH-1")
            await pipeline.run_daily_health(date(2026, 3, 1))

    Samples for one vehicle are processed one at a time in timestamp
    order; different vehicles run concurrently.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        store: InsightStore | None = None,
        timeline: PositionTimeline | None = None,
        strategies: Iterable[TripSegmentationStrategy] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or PipelineConfig()
        self._clock = clock
        self._store = store if store is not None else InsightStore(clock=clock)
        self._timeline = timeline if timeline is not None else PositionTimeline()
        self._detector = EventDetector(self._config, history=self._timeline.range)
        self._strategies = tuple(strategies) if strategies is not None else default_strategies(self._config)
        self._clusterer = LocationClusterer(self._config)
        self._buffer = ReorderBuffer(timedelta(seconds=self._config.reorder_window_seconds))
        self._vehicle_locks: dict[str, asyncio.Lock] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._mqtt_runtime: PositionMqttRuntime | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def store(self) -> InsightStore:
        return self._store

    @property
    def timeline(self) -> PositionTimeline:
        return self._timeline

    @property
    def detector(self) -> EventDetector:
        return self._detector

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> InsightPipeline:
        self._loop = asyncio.get_running_loop()
        if self._config.mqtt_host:
            self._start_mqtt()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop_mqtt()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.drain()
        self._loop = None

    def _start_mqtt(self) -> None:
        assert self._loop is not None  # noqa: S101
        runtime = PositionMqttRuntime(
            loop=self._loop,
            on_samples=self._on_mqtt_samples,
            keepalive=self._config.mqtt_keepalive,
            client_id=self._config.mqtt_client_id or "",
            username=self._config.mqtt_username,
            password=self._config.mqtt_password,
        )
        try:
            runtime.start(
                host=self._config.mqtt_host or "",
                port=self._config.mqtt_port,
                topic=self._config.mqtt_topic,
                tls=self._config.mqtt_tls,
            )
        except OSError:
            _logger.warning("MQTT startup failed host=%s", self._config.mqtt_host, exc_info=True)
            return
        self._mqtt_runtime = runtime

    def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            runtime.stop()

    def _on_mqtt_samples(self, samples: list[PositionSample]) -> None:
        task = asyncio.ensure_future(self.submit_many(samples))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _vehicle_lock(self, vehicle_id: str) -> asyncio.Lock:
        lock = self._vehicle_locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._vehicle_locks[vehicle_id] = lock
        return lock

    async def _with_retry(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a store call, retrying ``StorageError`` with exponential backoff."""
        retries = self._config.storage_retries
        delay = self._config.retry_backoff_seconds
        for attempt in range(1, retries + 1):
            try:
                return fn()
            except StorageError as exc:
                if attempt >= retries:
                    raise StorageError(
                        f"{operation} failed after {attempt} attempts: {exc}",
                        operation=operation,
                        attempts=attempt,
                    ) from exc
                _logger.warning(
                    "Store %s failed (attempt %d/%d), retrying in %.2fs",
                    operation,
                    attempt,
                    retries,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")  # pragma: no cover

    def _today(self) -> date:
        return self._clock().astimezone(self._config.tzinfo).date()

    # ------------------------------------------------------------------
    # Ingestion and event detection
    # ------------------------------------------------------------------

    async def ingest(self, sample: PositionSample) -> list[Event]:
        """Store one sample and run event detection on it.

        Duplicate deliveries are ignored. A sample older than the last
        evaluated one for its vehicle is stored (trips and health pick it
        up on recompute) but is not run through detection.

        Returns the events that were created (cooldown-suppressed
        duplicates are not included).
        """
        async with self._vehicle_lock(sample.vehicle_id):
            if not self._timeline.add(sample):
                _logger.debug("Duplicate sample vehicle=%s ts=%s", sample.vehicle_id, sample.timestamp)
                return []

            if self._detector.last_sample(sample.vehicle_id) is None:
                earlier = self._timeline.range(sample.vehicle_id, end=sample.timestamp)
                if earlier:
                    self._detector.seed(earlier[-1])

            created: list[Event] = []
            for event in self._detector.process(sample):
                cooldown = cooldown_for(event.event_type, self._config)
                inserted = await self._with_retry(
                    "insert_event",
                    lambda e=event, c=cooldown: self._store.insert_event(e, cooldown=c),
                )
                if inserted:
                    created.append(event)
            return created

    async def ingest_raw(self, payload: Mapping[str, Any], *, vehicle_id: str | None = None) -> list[Event]:
        """Parse a raw payload and ingest it; malformed payloads are logged and dropped."""
        try:
            sample = PositionSample.from_api(dict(payload), vehicle_id=vehicle_id)
        except InputError as exc:
            _logger.warning("Rejected sample vehicle=%s: %s", exc.vehicle_id, exc)
            return []
        return await self.ingest(sample)

    async def ingest_batch(self, samples: Iterable[PositionSample | Mapping[str, Any]]) -> list[Event]:
        """Ingest a batch, reordering each vehicle's samples by timestamp.

        Invalid entries are rejected individually. Vehicles are processed
        concurrently.
        """
        by_vehicle: dict[str, list[PositionSample]] = {}
        for item in samples:
            if isinstance(item, PositionSample):
                sample = item
            else:
                try:
                    sample = PositionSample.from_api(dict(item))
                except InputError as exc:
                    _logger.warning("Rejected sample in batch vehicle=%s: %s", exc.vehicle_id, exc)
                    continue
            by_vehicle.setdefault(sample.vehicle_id, []).append(sample)

        async def _run(vehicle_samples: list[PositionSample]) -> list[Event]:
            events: list[Event] = []
            for sample in sorted(vehicle_samples, key=lambda s: s.timestamp):
                events.extend(await self.ingest(sample))
            return events

        results = await asyncio.gather(*(_run(group) for group in by_vehicle.values()))
        created = [event for group in results for event in group]
        created.sort(key=lambda e: (e.vehicle_id, e.created_at))
        return created

    async def submit(self, sample: PositionSample) -> list[Event]:
        """Streaming entry point: buffer, reorder, then ingest what is released."""
        created: list[Event] = []
        for ready in self._buffer.push(sample):
            created.extend(await self.ingest(ready))
        return created

    async def submit_many(self, samples: Iterable[PositionSample]) -> list[Event]:
        created: list[Event] = []
        for sample in samples:
            created.extend(await self.submit(sample))
        return created

    async def drain(self) -> list[Event]:
        """Flush the reorder buffer and ingest everything still pending."""
        created: list[Event] = []
        for sample in self._buffer.flush():
            created.extend(await self.ingest(sample))
        return created

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    async def segment_trips(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Trip]:
        """Run every segmentation strategy over ``[start, end)`` and store the result.

        Each strategy's trips starting in the window are replaced, so running
        this twice over the same samples leaves the same trips behind. The
        samples read reach ``trip_window_padding_hours`` past both edges, so
        a trip crossing an edge is rebuilt whole; only trips that start
        inside the window are returned and stored.
        """
        padding = timedelta(hours=self._config.trip_window_padding_hours)
        samples = self._timeline.range(
            vehicle_id,
            start - padding if start is not None else None,
            end + padding if end is not None else None,
        )
        trips: list[Trip] = []
        for strategy in self._strategies:
            segmented = [
                trip
                for trip in strategy.segment(samples)
                if (start is None or trip.start_time >= start) and (end is None or trip.start_time < end)
            ]
            await self._with_retry(
                "replace_trips",
                lambda s=strategy.source, t=segmented: self._store.replace_trips(
                    vehicle_id, s, t, start=start, end=end
                ),
            )
            trips.extend(segmented)
        trips.sort(key=lambda t: (t.start_time, t.source_method.value))
        _logger.debug("Segmented %d trips for vehicle=%s", len(trips), vehicle_id)
        return trips

    # ------------------------------------------------------------------
    # Learned locations
    # ------------------------------------------------------------------

    async def learn_locations(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[LearnedLocation]:
        """Fold closed dwell episodes in ``[start, end)`` into learned locations.

        Each dwell is learned once, however often the window is replayed.
        Returns the locations touched by this call.
        """
        history_window = timedelta(days=self._config.classification_history_days)
        touched: dict[str, LearnedLocation] = {}
        for dwell in find_dwell_candidates(self._timeline.range(vehicle_id, start, end), self._config):
            if not self._store.claim_dwell(dwell.key):
                continue
            merged = self._clusterer.merge(dwell, self._store.get_locations(vehicle_id))
            history = self._timeline.range(vehicle_id, dwell.end - history_window, dwell.end)
            location = self._clusterer.classify(merged, history)
            try:
                await self._with_retry("save_location", lambda loc=location: self._store.save_location(loc))
            except StorageError:
                self._store.release_dwell(dwell.key)
                raise
            touched[location.id] = location
        return list(touched.values())

    def location_context(
        self,
        vehicle_id: str,
        latitude: float,
        longitude: float,
        *,
        now: datetime | None = None,
    ) -> LocationContext:
        """Whether a point is at one of the vehicle's learned locations."""
        return self._store.get_location_context(
            vehicle_id,
            latitude,
            longitude,
            radius_m=self._config.nearby_radius_m,
            now=now or self._clock(),
        )

    # ------------------------------------------------------------------
    # Daily health
    # ------------------------------------------------------------------

    def active_vehicles(self, day: date) -> list[str]:
        start, end = day_window(day, self._config.tzinfo)
        return self._timeline.active_vehicles(start, end)

    async def compute_health(self, vehicle_id: str, day: date, *, refresh_trips: bool = True) -> DailyHealthScore:
        """Compute and store one vehicle-day of features and score.

        Raises
        ------
        ComputationError
            If the vehicle had no activity that day.
        StorageError
            If storing the result keeps failing.
        """
        start, end = day_window(day, self._config.tzinfo)
        if refresh_trips:
            await self.segment_trips(vehicle_id, start=start, end=end)

        feature = compute_daily_features(
            vehicle_id,
            day,
            self._timeline.range(vehicle_id, start, end),
            self._store.query_trips(vehicle_id, start=start, end=end),
            self._store.query_events(vehicle_id, start=start, end=end),
            config=self._config,
        )
        score = score_daily_health(feature, self._store.previous_health_score(vehicle_id, day))
        await self._with_retry("save_health", lambda: self._store.save_health(feature, score))
        return score

    async def run_daily_health(
        self,
        day: date,
        *,
        vehicle_ids: Iterable[str] | None = None,
    ) -> list[HealthSweepResult]:
        """Score every vehicle with activity on *day*, ``health_workers`` at a time."""
        targets = list(vehicle_ids) if vehicle_ids is not None else self.active_vehicles(day)
        semaphore = asyncio.Semaphore(self._config.health_workers)

        async def _one(vehicle_id: str) -> HealthSweepResult:
            async with semaphore:
                try:
                    score = await self.compute_health(vehicle_id, day)
                except (ComputationError, StorageError) as exc:
                    _logger.warning("Health score failed vehicle=%s day=%s: %s", vehicle_id, day, exc)
                    return HealthSweepResult(vehicle_id=vehicle_id, day=day, status=SweepStatus.FAILED, error=str(exc))
                return HealthSweepResult(
                    vehicle_id=vehicle_id,
                    day=day,
                    status=SweepStatus.SUCCESS,
                    health_score=score.health_score,
                    confidence_score=score.confidence_score,
                )

        results = await asyncio.gather(*(_one(vid) for vid in targets))
        _logger.debug(
            "Health sweep day=%s vehicles=%d failed=%d",
            day,
            len(results),
            sum(1 for r in results if r.status == SweepStatus.FAILED),
        )
        return list(results)

    async def recompute_recent(
        self,
        vehicle_id: str,
        *,
        end_day: date | None = None,
        days_back: int = 2,
    ) -> list[DailyHealthScore]:
        """Recompute ``end_day`` and the *days_back* days before it, oldest first.

        Days without activity are skipped.
        """
        end_day = end_day or self._today()
        scores: list[DailyHealthScore] = []
        for offset in range(days_back, -1, -1):
            day = end_day - timedelta(days=offset)
            try:
                scores.append(await self.compute_health(vehicle_id, day))
            except ComputationError:
                _logger.debug("No activity to score for vehicle=%s day=%s", vehicle_id, day)
        return scores

    async def backfill_health(self, *, days_back: int = 7, end_day: date | None = None) -> list[HealthSweepResult]:
        """Run the daily sweep for each of the last *days_back* days, oldest first."""
        end_day = end_day or self._today()
        results: list[HealthSweepResult] = []
        for offset in range(days_back - 1, -1, -1):
            results.extend(await self.run_daily_health(end_day - timedelta(days=offset)))
        return results

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def purge_events(self, *, now: datetime | None = None) -> int:
        """Apply the event retention policy."""
        return await self._with_retry("purge_events", lambda: self._store.purge_events(now=now or self._clock()))
