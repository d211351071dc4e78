#!/usr/bin/env python3
"""
Test suite for tsrename/correlator.py: PAT/SDT/EIT/SIT fusion state machine
"""

import io
import pytest
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tsrename import ts_decoder
from tsrename.correlator import MetadataCorrelator, CorrelatorState, ServiceIdentity
from tsrename.errors import InformationNotFound, InformationWindowExceeded
from tsrename.ts_decoder import (
    DecodedPacket, PatSection, SdtSection, EitSection, EitEvent, SitSection, TsDecoder
)
from ts_fixtures import (
    packet, section_packet, pat_section, sdt_section, eit_section, utf8_string
)

START = datetime(2024, 4, 6, 23, 30, 0)
PAT = PatSection(0x7fe0, (0x400, 0x401))
SDT = SdtSection(0x7fe0, 4, {0x400: 'TOKYO MX1', 0x401: 'TOKYO MX2'})


def eit(service_id=0x400, tsid=0x7fe0, onid=4, section_number=0, name='Show', start=START):
    return EitSection(service_id, tsid, onid, section_number,
                      (EitEvent(1, start, 1800, name),))


class TestStructurePhase:
    """Four write-once slots before events are considered"""

    def test_pat_then_sdt_transitions(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        assert correlator.state is CorrelatorState.COLLECTING_STRUCTURE
        correlator.on_section(SDT)
        assert correlator.state is CorrelatorState.AWAITING_EVENT
        assert correlator.service_identity == ServiceIdentity(4, 0x7fe0, 0x400)

    def test_sdt_then_pat_transitions(self):
        correlator = MetadataCorrelator()
        correlator.on_section(SDT)
        correlator.on_section(PAT)
        assert correlator.state is CorrelatorState.AWAITING_EVENT

    def test_first_pat_wins(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        correlator.on_section(PatSection(0x1111, (0x999,)))
        assert correlator.transport_stream_id == 0x7fe0
        assert correlator.service_id == 0x400

    def test_service_name_write_once(self):
        correlator = MetadataCorrelator()
        correlator.on_section(SdtSection(0x7fe0, 4, {0x400: 'FIRST'}))
        correlator.on_section(SdtSection(0x7fe0, 4, {0x400: 'SECOND', 0x402: 'OTHER'}))
        assert correlator.services == {0x400: 'FIRST', 0x402: 'OTHER'}

    def test_empty_service_name_is_replaced(self):
        correlator = MetadataCorrelator()
        correlator.on_section(SdtSection(0x7fe0, 4, {0x400: ''}))
        correlator.on_section(SdtSection(0x7fe0, 4, {0x400: 'MX'}))
        assert correlator.services == {0x400: 'MX'}
        correlator.on_section(PatSection(1, (0x400,)))
        assert correlator.state is CorrelatorState.AWAITING_EVENT

    def test_service_key_present_with_empty_name_transitions(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PatSection(1, (0x400,)))
        correlator.on_section(SdtSection(1, 4, {0x400: ''}))
        assert correlator.state is CorrelatorState.AWAITING_EVENT
        correlator.on_section(eit(tsid=1))
        assert correlator.result().service_name == ''

    def test_candidate_missing_from_services_keeps_collecting(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        correlator.on_section(SdtSection(0x7fe0, 4, {0x401: 'TOKYO MX2'}))
        assert correlator.state is CorrelatorState.COLLECTING_STRUCTURE
        assert correlator.service_identity is not None

    def test_eit_before_structure_ignored(self):
        correlator = MetadataCorrelator()
        correlator.on_section(eit())
        correlator.on_section(PAT)
        correlator.on_section(SDT)
        assert correlator.state is CorrelatorState.AWAITING_EVENT
        assert correlator.identity is None

    def test_structure_ignored_after_transition(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        correlator.on_section(SDT)
        correlator.on_section(SdtSection(0x7fe0, 4, {0x403: 'LATE'}))
        assert 0x403 not in correlator.services


class TestEventPhase:
    """EIT present/following for exactly the resolved triple"""

    def setup_correlator(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        correlator.on_section(SDT)
        return correlator

    def test_matching_eit_resolves(self):
        correlator = self.setup_correlator()
        correlator.on_section(eit())
        assert correlator.done
        identity = correlator.result()
        assert identity.service_name == 'TOKYO MX1'
        assert identity.event_name == 'Show'
        assert identity.start_time == START
        assert identity.duration_seconds == 1800

    @pytest.mark.parametrize('kwargs', [
        {'service_id': 0x401},
        {'tsid': 0x1111},
        {'onid': 5},
        {'section_number': 1},
    ])
    def test_mismatched_eit_ignored(self, kwargs):
        correlator = self.setup_correlator()
        correlator.on_section(eit(**kwargs))
        assert correlator.state is CorrelatorState.AWAITING_EVENT

    def test_event_without_name_ignored(self):
        correlator = self.setup_correlator()
        correlator.on_section(eit(name=None))
        assert not correlator.done

    def test_event_without_start_ignored(self):
        correlator = self.setup_correlator()
        correlator.on_section(eit(start=None))
        assert not correlator.done

    def test_resolved_is_terminal(self):
        correlator = self.setup_correlator()
        correlator.on_section(eit())
        correlator.on_section(eit(name='Other'))
        assert correlator.result().event_name == 'Show'


class TestSit:
    """Partial-TS selection information"""

    def test_complete_sit_resolves_from_start(self):
        correlator = MetadataCorrelator()
        correlator.on_section(SitSection('MX', 'Show', START))
        identity = correlator.result()
        assert identity.service_name == 'MX'
        assert identity.duration_seconds is None

    def test_complete_sit_resolves_while_awaiting_event(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        correlator.on_section(SDT)
        correlator.on_section(SitSection('MX', 'Show', START))
        assert correlator.state is CorrelatorState.RESOLVED

    def test_partial_sit_keeps_waiting(self):
        correlator = MetadataCorrelator()
        correlator.on_section(SitSection('MX', None, START))
        assert correlator.state is CorrelatorState.COLLECTING_STRUCTURE


class TestFailure:
    """Window exhaustion and missing information"""

    def feed_packets(self, correlator, count):
        for _ in range(count):
            correlator.on_packet(DecodedPacket(0x100, 0, False, None))

    def test_window_exceeded(self):
        correlator = MetadataCorrelator(window_packets=2)
        self.feed_packets(correlator, 3)
        assert correlator.window_closed
        with pytest.raises(InformationWindowExceeded):
            correlator.result()
        assert correlator.state is CorrelatorState.FAILED

    def test_sit_after_window_ignored(self):
        correlator = MetadataCorrelator(window_packets=2)
        self.feed_packets(correlator, 3)
        correlator.on_section(SitSection('MX', 'Show', START))
        assert not correlator.done

    def test_sit_inside_window_resolves(self):
        correlator = MetadataCorrelator(window_packets=2)
        self.feed_packets(correlator, 2)
        correlator.on_section(SitSection('MX', 'Show', START))
        assert correlator.result().service_name == 'MX'

    def test_eit_after_window_still_resolves(self):
        correlator = MetadataCorrelator(window_packets=2)
        correlator.on_section(PAT)
        self.feed_packets(correlator, 10)
        correlator.on_section(SDT)
        correlator.on_section(eit())
        assert correlator.result().event_name == 'Show'

    def test_structure_seen_reports_not_found(self):
        correlator = MetadataCorrelator(window_packets=2)
        correlator.on_section(PAT)
        self.feed_packets(correlator, 3)
        with pytest.raises(InformationNotFound) as excinfo:
            correlator.result()
        assert not isinstance(excinfo.value, InformationWindowExceeded)

    def test_window_exceeded_is_information_failure(self):
        assert issubclass(InformationWindowExceeded, InformationNotFound)

    def test_exhausted_input(self):
        correlator = MetadataCorrelator()
        correlator.on_section(PAT)
        with pytest.raises(InformationNotFound, match="Can't find information"):
            correlator.result()


class TestWithDecoder:
    """Correlator driven by a decoded byte stream"""

    def test_stops_at_first_identity(self, monkeypatch):
        monkeypatch.setattr(ts_decoder, 'decode_arib_string', utf8_string)
        data = b''.join([
            section_packet(0x12, eit_section(0x400, 0x7fe0, 4, [(1, START, 1800, 'Early')])),
            section_packet(0x00, pat_section(0x7fe0, [0x400])),
            section_packet(0x11, sdt_section(0x7fe0, 4, {0x400: 'TOKYO MX1'})),
            section_packet(0x12, eit_section(0x400, 0x7fe0, 4, [(2, START, 1800, 'Show')]), cc=1),
            packet(0x100, payload=b''),
            packet(0x100, cc=1, payload=b''),
        ])
        correlator = MetadataCorrelator()
        decoder = TsDecoder(io.BytesIO(data))
        decoder.run(correlator)

        assert correlator.result().event_name == 'Show'
        assert decoder.packet_count == 4
