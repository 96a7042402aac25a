"""Tests for client log ingestion."""

import pytest

from faultline.errors import InvalidLogBatch
from faultline.ingestion import LogEntry, LogIngestor, LogLevel


def _entry(level="info", message="clicked save", **extra):
    entry = {"timestamp": "2024-05-01T10:00:00Z", "level": level, "message": message}
    entry.update(extra)
    return entry


class TestIngest:
    """Tests for batch filtering."""

    @pytest.mark.parametrize("payload", [None, {"logs": []}, "logs", 42])
    def test_not_a_list(self, payload):
        with pytest.raises(InvalidLogBatch):
            LogIngestor().ingest(payload)

    def test_empty_list(self):
        with pytest.raises(InvalidLogBatch):
            LogIngestor().ingest([])

    def test_no_valid_entries(self):
        with pytest.raises(InvalidLogBatch) as exc_info:
            LogIngestor().ingest([{"level": "info"}, _entry(level="verbose")])
        assert exc_info.value.details["received"] == 2

    def test_invalid_entries_dropped(self, metrics):
        batch = [
            _entry(),
            {"timestamp": "t", "message": "no level"},
            _entry(level="fatal"),
            "not an object",
            _entry(level="warn", userId="u-1", sessionId="s-1"),
        ]
        result = LogIngestor(metrics=metrics).ingest(batch)

        assert result.received == 5
        assert result.processed == 2
        assert result.dropped == 3
        values = metrics.snapshot().values()
        assert values["client_logs_dropped_total"] == 3
        assert values['client_logs_total{level="info"}'] == 1
        assert values['client_logs_total{level="warn"}'] == 1

    def test_aliases(self):
        entry = LogEntry.model_validate(_entry(userId="u-1", sessionId="s-1"))
        assert entry.user_id == "u-1"
        assert entry.session_id == "s-1"
        assert entry.level == LogLevel.INFO


class TestSignals:
    """Tests for rate warnings and critical surfacing."""

    def test_rate_warning_above_threshold(self):
        ingestor = LogIngestor()
        assert ingestor.ingest([_entry(level="error")] * 11).rate_warning is True
        assert ingestor.ingest([_entry(level="error")] * 10).rate_warning is False

    def test_critical_entries_surface_individually(self):
        surfaced = []
        ingestor = LogIngestor(on_critical=surfaced.append)
        result = ingestor.ingest(
            [_entry(level="critical", message="payment failed"), _entry(), _entry(level="critical", message="db gone")]
        )

        assert result.critical == 2
        assert [e.message for e in surfaced] == ["payment failed", "db gone"]

    def test_critical_hook_errors_swallowed(self):
        def bad_hook(entry):
            raise RuntimeError("pager down")

        result = LogIngestor(on_critical=bad_hook).ingest([_entry(level="critical")])
        assert result.processed == 1
