"""Tests for the time_logger module."""

import time

import pytest

from cusvm.time_logger import TimeLogger, TimingEvent, TrackingEntry


class TestTimingEvent:
    """Test TimingEvent container."""

    def test_timing_event_creation(self):
        """Test that TimingEvent can be created with required fields."""
        event = TimingEvent(
            name="test_event",
            event_type="start",
            timestamp=123.456,
        )
        assert event.name == "test_event"
        assert event.event_type == "start"
        assert event.timestamp == 123.456
        assert event.metadata == {}

    def test_timing_event_with_metadata(self):
        """Test TimingEvent with optional metadata."""
        event = TimingEvent(
            name="test_event",
            event_type="progress",
            timestamp=123.456,
            metadata={"message": "Test message"},
        )
        assert event.metadata == {"message": "Test message"}

    def test_timing_event_invalid_type(self):
        with pytest.raises(ValueError):
            TimingEvent(name="test", event_type="pause", timestamp=1.0)


class TestTimeLogger:
    """Test TimeLogger class."""

    def test_initialization_default(self):
        """Test TimeLogger initialization with default verbosity."""
        logger = TimeLogger()
        assert logger.verbosity == "default"
        assert logger.events == []
        assert logger.entries == []

    @pytest.mark.parametrize("verbosity", ["verbose", "debug"])
    def test_initialization_levels(self, verbosity):
        logger = TimeLogger(verbosity=verbosity)
        assert logger.verbosity == verbosity

    def test_initialization_string_none(self):
        """Test TimeLogger initialization with string 'None'."""
        logger = TimeLogger(verbosity="None")
        assert logger.verbosity is None

    def test_initialization_invalid_verbosity(self):
        """Test that invalid verbosity raises ValueError."""
        with pytest.raises(ValueError, match="verbosity must be"):
            TimeLogger(verbosity="invalid")

    def test_none_verbosity_records_silently(self, capsys):
        """Test that None verbosity still records, but prints nothing."""
        logger = TimeLogger(verbosity=None)
        logger.start_event("test")
        logger.stop_event("test")
        logger.progress("test", "message")
        logger.add_entry("cg", "iterations", 3)
        logger.print_summary()
        assert len(logger.events) == 3
        assert logger.get_entry("cg", "iterations") == 3
        assert capsys.readouterr().out == ""

    def test_start_event(self):
        """Test recording a start event."""
        logger = TimeLogger()
        logger.start_event("test_operation")

        assert len(logger.events) == 1
        assert logger.events[0].name == "test_operation"
        assert logger.events[0].event_type == "start"
        assert logger.events[0].timestamp > 0

    def test_stop_event_returns_duration(self):
        """Test recording a stop event."""
        logger = TimeLogger()
        logger.start_event("test_operation")
        time.sleep(0.01)
        duration = logger.stop_event("test_operation")

        assert len(logger.events) == 2
        assert logger.events[1].event_type == "stop"
        assert logger.events[1].timestamp > logger.events[0].timestamp
        assert duration >= 0.01

    def test_stop_without_start(self):
        logger = TimeLogger()
        assert logger.stop_event("test_operation") == 0.0

    def test_progress_event(self):
        """Test recording a progress event."""
        logger = TimeLogger()
        logger.progress("test_operation", "50% complete")

        assert len(logger.events) == 1
        assert logger.events[0].event_type == "progress"
        assert logger.events[0].metadata["message"] == "50% complete"

    def test_get_event_duration(self):
        """Test calculating duration between start and stop events."""
        logger = TimeLogger()
        logger.start_event("test_operation")
        time.sleep(0.02)
        logger.stop_event("test_operation")

        duration = logger.get_event_duration("test_operation")
        assert duration is not None
        assert duration >= 0.02

    def test_get_event_duration_no_stop(self):
        """Test get_event_duration returns None when stop event missing."""
        logger = TimeLogger()
        logger.start_event("test_operation")
        assert logger.get_event_duration("test_operation") is None

    def test_multiple_operations(self):
        """Test tracking multiple operations."""
        logger = TimeLogger()
        logger.start_event("operation1")
        logger.start_event("operation2")
        logger.stop_event("operation1")
        logger.stop_event("operation2")

        assert len(logger.events) == 4
        assert logger.get_event_duration("operation1") is not None
        assert logger.get_event_duration("operation2") is not None

    def test_get_aggregate_durations(self):
        """Test aggregating event durations."""
        logger = TimeLogger()
        logger.start_event("operation1")
        time.sleep(0.01)
        logger.stop_event("operation1")
        logger.start_event("operation1")
        time.sleep(0.01)
        logger.stop_event("operation1")

        durations = logger.get_aggregate_durations()
        assert "operation1" in durations
        assert durations["operation1"] >= 0.02

    def test_print_summary_default_verbosity(self, capsys):
        """Test summary output at default verbosity."""
        logger = TimeLogger(verbosity="default")
        logger.start_event("kernel_matrix_assembly")
        logger.stop_event("kernel_matrix_assembly")

        logger.print_summary()
        captured = capsys.readouterr()
        assert "Timing Summary" in captured.out
        assert "kernel_matrix_assembly" in captured.out

    def test_verbose_prints_progress(self, capsys):
        logger = TimeLogger(verbosity="verbose")
        logger.progress("cg_iteration", "Done 1 out of 10 CG iterations")
        captured = capsys.readouterr()
        assert "Done 1 out of 10" in captured.out

    def test_debug_prints_everything(self, capsys):
        """Test output at debug level."""
        logger = TimeLogger(verbosity="debug")
        logger.start_event("test")
        logger.progress("test", "halfway")
        logger.stop_event("test")
        logger.add_entry("cg", "iterations", 4)

        captured = capsys.readouterr()
        assert "DEBUG" in captured.out
        assert "progress" in captured.out.lower()
        assert "cg/iterations = 4" in captured.out

    def test_empty_event_name_raises(self):
        """Test that empty event names raise ValueError."""
        logger = TimeLogger()
        with pytest.raises(ValueError, match="event_name cannot be empty"):
            logger.start_event("")
        with pytest.raises(ValueError, match="event_name cannot be empty"):
            logger.stop_event("")
        with pytest.raises(ValueError, match="event_name cannot be empty"):
            logger.progress("", "message")


class TestTrackingEntries:

    def test_latest_entry_wins(self):
        logger = TimeLogger(None)
        logger.add_entry("cg", "iterations", 1)
        logger.add_entry("cg", "iterations", 2)
        assert logger.get_entry("cg", "iterations") == 2
        assert logger.entries[0] == TrackingEntry("cg", "iterations", 99)

    def test_missing_entry_raises(self):
        logger = TimeLogger(None)
        with pytest.raises(KeyError):
            logger.get_entry("cg", "iterations")

    def test_clear(self):
        logger = TimeLogger(None)
        logger.start_event("fit")
        logger.add_entry("cg", "iterations", 1)
        logger.clear()
        assert logger.events == []
        assert logger.entries == []
        assert logger.stop_event("fit") == 0.0
