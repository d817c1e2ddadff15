"""Tests for scan sessions."""

import io

import pytest

from src.services.scan_session import ScanSession, StreamDecoder
from src.utils.exceptions import InvalidInputError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _decoder(*codes):
    return StreamDecoder(io.StringIO("\n".join(codes) + "\n"))


class TestStreamDecoder:

    def test_skips_blank_lines(self):
        decoder = StreamDecoder(io.StringIO("0001\n\n  \n 0002 \n"))
        decoder.start()

        assert list(decoder.codes()) == ["0001", "0002"]

    def test_stopped_decoder_yields_nothing(self):
        decoder = _decoder("0001")

        assert list(decoder.codes()) == []


class TestScanSession:

    def test_lookup_mode(self, service):
        with ScanSession(service, _decoder("0001", "9999"), mode="lookup", cooldown=0) as session:
            result = session.run()

        assert result.scanned_count == 2
        assert result.found_count == 1
        assert result.missing_count == 1
        assert result.adjusted_count == 0
        assert result.end_time is not None
        assert session.active is False

    def test_unload_mode_applies_quantity(self, service):
        events = []
        session = ScanSession(service, _decoder("0001", "0002"), mode="out", quantity=2, cooldown=0)

        result = session.run(on_event=events.append)

        assert result.adjusted_count == 2
        assert [e.status for e in events] == ["adjusted", "adjusted"]
        assert events[0].adjustment.new_quantity == 8
        assert service.find_by_barcode("0002").quantity == 1

    def test_unload_past_zero_recorded_and_session_continues(self, service):
        session = ScanSession(service, _decoder("0002", "0001"), mode="out", quantity=5, cooldown=0)

        result = session.run()

        assert result.adjusted_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].barcode == "0002"
        assert result.errors[0].error_type == "insufficient_quantity"
        assert result.success is False

    def test_load_mode(self, service):
        session = ScanSession(service, _decoder("a1b2"), mode="in", quantity=10, cooldown=0)

        session.run()

        assert service.find_by_barcode("A1B2").quantity == 260

    def test_repeat_inside_cooldown_ignored(self, service):
        clock = FakeClock()
        session = ScanSession(service, _decoder(), mode="in", cooldown=3, clock=clock)
        session.start()

        first = session.process("0001")
        clock.now += 1
        repeat = session.process("0001")
        clock.now += 3
        later = session.process("0001")

        assert [first.status, repeat.status, later.status] == ["adjusted", "ignored", "adjusted"]
        assert service.find_by_barcode("0001").quantity == 12
        assert session.stop().ignored_count == 1

    def test_different_code_not_ignored(self, service):
        clock = FakeClock()
        session = ScanSession(service, _decoder(), mode="lookup", cooldown=3, clock=clock)
        session.start()

        assert session.process("0001").status == "found"
        assert session.process("0002").status == "found"

    def test_store_failure_recorded(self, service, store, store_down):
        store.failure = store_down
        session = ScanSession(service, _decoder("0001"), mode="lookup", cooldown=0)

        result = session.run()

        assert result.found_count == 0
        assert result.errors[0].error_type == "store_unavailable"

    def test_default_mode_from_config(self, service):
        session = ScanSession(service, _decoder())

        assert session.mode == "lookup"
        assert session.cooldown == 3.0

    def test_unknown_mode(self, service):
        with pytest.raises(InvalidInputError, match="Unknown scan mode"):
            ScanSession(service, _decoder(), mode="teleport")
