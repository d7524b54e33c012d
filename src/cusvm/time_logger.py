"""Timing and diagnostic record for training runs.

The :class:`TimeLogger` collects timed start/stop events, free-form progress
messages and named tracking entries (``category``, ``name``, ``value``).
Tracking entries are how the solver reports its results, e.g. the number of
CG iterations or the final per-RHS residuals, so callers can inspect a run
after it finished without parsing printed output.
"""

import time
from typing import Any, Dict, List, Optional

import attrs

VERBOSITY_LEVELS = {None, "default", "verbose", "debug"}


@attrs.define(frozen=True)
class TimingEvent:
    """Record of a single timing event.

    Attributes
    ----------
    name : str
        Identifier for the event (e.g., 'kernel_matrix_assembly')
    event_type : str
        Type of event: 'start', 'stop', or 'progress'
    timestamp : float
        Wall-clock time from time.perf_counter()
    metadata : dict
        Optional metadata (sizes, counts, messages)
    """
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(
        validator=attrs.validators.in_({'start', 'stop', 'progress'})
    )
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)


@attrs.define(frozen=True)
class TrackingEntry:
    """A named value reported by a solver component."""
    category: str = attrs.field(validator=attrs.validators.instance_of(str))
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    value: Any = attrs.field(eq=False)


class TimeLogger:
    """Callback-based timing and tracking system.

    Parameters
    ----------
    verbosity : str or None, default='default'
        Output verbosity level. Options:
        - None: record silently
        - 'default': Aggregate times only, printed by :meth:`print_summary`
        - 'verbose': Durations printed as events stop
        - 'debug': All events with start/stop/progress

    Attributes
    ----------
    verbosity : str or None
        Current verbosity level
    events : list[TimingEvent]
        Chronological list of all recorded events
    entries : list[TrackingEntry]
        Chronological list of tracking entries
    """

    def __init__(self, verbosity: Optional[str] = 'default') -> None:
        if verbosity == "None":
            verbosity = None
        if verbosity not in VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be None, 'default', 'verbose', or 'debug', "
                f"got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: List[TimingEvent] = []
        self.entries: List[TrackingEntry] = []
        self._active_starts: Dict[str, float] = {}

    def start_event(self, event_name: str, **metadata: Any) -> None:
        """Record the start of a timed operation.

        Parameters
        ----------
        event_name : str
            Unique identifier for this event
        **metadata : Any
            Optional metadata to store with event
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")

        timestamp = time.perf_counter()
        event = TimingEvent(
            name=event_name,
            event_type='start',
            timestamp=timestamp,
            metadata=metadata
        )
        self.events.append(event)
        self._active_starts[event_name] = timestamp

        if self.verbosity == 'debug':
            print(f"[DEBUG] Started: {event_name}")

    def stop_event(self, event_name: str, **metadata: Any) -> float:
        """Record the end of a timed operation.

        Returns
        -------
        float
            Duration since the matching start in seconds, ``0.0`` when no
            start was recorded.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")

        timestamp = time.perf_counter()
        event = TimingEvent(
            name=event_name,
            event_type='stop',
            timestamp=timestamp,
            metadata=metadata
        )
        self.events.append(event)

        duration = 0.0
        if event_name in self._active_starts:
            duration = timestamp - self._active_starts.pop(event_name)
            if self.verbosity == 'debug':
                print(f"[DEBUG] Stopped: {event_name} ({duration:.3f}s)")
            elif self.verbosity == 'verbose':
                print(f"{event_name}: {duration:.3f}s")
        elif self.verbosity == 'debug':
            print(f"[DEBUG] Warning: stop_event('{event_name}') "
                  "without matching start")
        return duration

    def progress(
        self, event_name: str, message: str, **metadata: Any
    ) -> None:
        """Record a progress update within an operation.

        Progress events don't require matching start/stop. They are printed
        in 'verbose' and 'debug' mode.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")

        timestamp = time.perf_counter()
        metadata_with_msg = dict(metadata)
        metadata_with_msg['message'] = message
        event = TimingEvent(
            name=event_name,
            event_type='progress',
            timestamp=timestamp,
            metadata=metadata_with_msg
        )
        self.events.append(event)

        if self.verbosity == 'debug':
            print(f"[DEBUG] Progress: {event_name} - {message}")
        elif self.verbosity == 'verbose':
            print(message)

    def add_entry(self, category: str, name: str, value: Any) -> None:
        """Store a tracking entry under ``category``/``name``."""
        self.entries.append(TrackingEntry(category, name, value))
        if self.verbosity == 'debug':
            print(f"[DEBUG] Entry: {category}/{name} = {value}")

    def get_entry(self, category: str, name: str) -> Any:
        """Return the most recent value tracked for ``category``/``name``.

        Raises
        ------
        KeyError
            If no such entry has been recorded.
        """
        for entry in reversed(self.entries):
            if entry.category == category and entry.name == name:
                return entry.value
        raise KeyError(f"No tracking entry '{category}/{name}' recorded.")

    def get_event_duration(self, event_name: str) -> Optional[float]:
        """Return the duration of the most recent completed event."""
        start_time = None
        stop_time = None

        # Search backwards for most recent pair
        for event in reversed(self.events):
            if event.name == event_name:
                if event.event_type == 'stop' and stop_time is None:
                    stop_time = event.timestamp
                elif event.event_type == 'start' and stop_time is not None:
                    start_time = event.timestamp
                    break

        if start_time is not None and stop_time is not None:
            return stop_time - start_time
        return None

    def get_aggregate_durations(self) -> Dict[str, float]:
        """Sum the durations of all completed events, keyed by name."""
        durations: Dict[str, float] = {}
        event_starts: Dict[str, float] = {}

        for event in self.events:
            if event.event_type == 'start':
                event_starts[event.name] = event.timestamp
            elif event.event_type == 'stop':
                if event.name in event_starts:
                    duration = (
                        event.timestamp - event_starts.pop(event.name)
                    )
                    durations[event.name] = (
                        durations.get(event.name, 0.0) + duration
                    )

        return durations

    def print_summary(self) -> None:
        """Print aggregate durations in 'default' mode.

        'verbose' and 'debug' already printed inline.
        """
        if self.verbosity == 'default':
            durations = self.get_aggregate_durations()
            if durations:
                print("\nTiming Summary:")
                for name, duration in sorted(durations.items()):
                    print(f"  {name}: {duration:.3f}s")

    def clear(self) -> None:
        """Forget all recorded events and entries."""
        self.events.clear()
        self.entries.clear()
        self._active_starts.clear()
