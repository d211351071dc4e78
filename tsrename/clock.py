#!/usr/bin/env python3
"""
Clock correlator: verify recorded start time and duration against the guide

PCR base values are a 33-bit counter at 90 kHz. Elapsed time between two
samples is always computed modulo 2^33 so a counter wrap inside the
recording is handled:

    elapsed_ticks = (end - start + WRAP) % WRAP
    elapsed_ms    = elapsed_ticks // 90

Three bounded scans are made, never a full pass over the file:
  - start:    from the file start up to the first TDT/TOT wall-clock anchor
  - first PCR near the file start
  - last PCR inside the trailing END_PCR_WINDOW_PACKETS units
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from tsrename.constants import (
    PCR_WRAP, PCR_TICKS_PER_MS, END_PCR_WINDOW_PACKETS, TS_PACKET_SIZE
)
from tsrename.errors import NoClockReference, StartTimeMismatch, DurationTooShort
from tsrename.ts_decoder import StreamConsumer, TsDecoder, DecodedPacket, TimeSection

logger = logging.getLogger(__name__)


def pcr_elapsed_ticks(end_pcr: int, start_pcr: int) -> int:
    """
    Ticks elapsed from start_pcr to end_pcr across at most one wrap

    Examples:
        >>> pcr_elapsed_ticks(5, 2**33 - 1)
        6
    """
    return (end_pcr - start_pcr + PCR_WRAP) % PCR_WRAP


def pcr_elapsed_ms(end_pcr: int, start_pcr: int) -> int:
    return pcr_elapsed_ticks(end_pcr, start_pcr) // PCR_TICKS_PER_MS


class StartTimeProbe(StreamConsumer):
    """Track PCR samples until the first broadcast wall-clock anchor"""

    wants_sections = True

    def __init__(self):
        self.first_pcr: Optional[int] = None
        self.last_pcr: Optional[int] = None
        self.anchor: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.anchor is not None

    def on_packet(self, packet: DecodedPacket) -> None:
        if not packet.has_pcr:
            return
        if self.first_pcr is None:
            self.first_pcr = packet.pcr_value
        self.last_pcr = packet.pcr_value

    def on_section(self, section) -> None:
        if isinstance(section, TimeSection) and self.anchor is None:
            self.anchor = section.time

    def actual_start(self) -> datetime:
        """Anchor time minus the PCR time elapsed before it"""
        if self.anchor is None:
            raise NoClockReference("Can't find start (no TDT/TOT in recording)")
        if self.first_pcr is None:
            return self.anchor
        return self.anchor - timedelta(milliseconds=pcr_elapsed_ms(self.last_pcr, self.first_pcr))


class PcrProbe(StreamConsumer):
    """Capture the first PCR sample, or the last one when first_only is False"""

    def __init__(self, first_only: bool = True):
        self.first_only = first_only
        self.pcr: Optional[int] = None

    @property
    def done(self) -> bool:
        return self.first_only and self.pcr is not None

    def on_packet(self, packet: DecodedPacket) -> None:
        if packet.has_pcr:
            self.pcr = packet.pcr_value


@dataclass(frozen=True)
class TimingVerdict:
    actual_start: datetime
    actual_duration_ms: int
    program_start: datetime
    program_duration_ms: int


class ClockCorrelator:
    """
    Measure a recording's real start time and duration from its PCR samples

    Args:
        path: Recording file
        packet_size: 188, 192 or 204
        end_window_packets: Trailing packet units scanned for the last PCR
    """

    def __init__(self, path: Path, packet_size: int = TS_PACKET_SIZE,
                 end_window_packets: int = END_PCR_WINDOW_PACKETS):
        self.path = Path(path)
        self.packet_size = packet_size
        self.end_window_packets = end_window_packets

    def _scan(self, consumer: StreamConsumer, offset: int = 0):
        with open(self.path, 'rb') as f:
            f.seek(offset)
            TsDecoder(f, self.packet_size).run(consumer)

    def measure_start(self) -> datetime:
        probe = StartTimeProbe()
        self._scan(probe)
        return probe.actual_start()

    def measure_duration(self) -> int:
        """Elapsed milliseconds between the first and the last PCR sample"""
        start = PcrProbe(first_only=True)
        self._scan(start)
        if start.pcr is None:
            raise NoClockReference("Can't find start (no PCR near file start)")

        size = os.path.getsize(self.path)
        offset = max(0, size - self.packet_size * self.end_window_packets)
        offset -= offset % self.packet_size
        end = PcrProbe(first_only=False)
        self._scan(end, offset)
        if end.pcr is None:
            raise NoClockReference("Can't find end (no PCR in trailing window)")

        return pcr_elapsed_ms(end.pcr, start.pcr)

    def verify(self, program_start: datetime, program_end: datetime,
               start_time_offset: int = 0, duration_offset: int = 0) -> TimingVerdict:
        """
        Check the recording against the guide's program timing

        Raises:
            StartTimeMismatch: recording started after program start + offset
            DurationTooShort: recording shorter than program duration + offset
            NoClockReference: no PCR or time anchor found in a scanned window
        """
        actual_start = self.measure_start()
        actual_duration = self.measure_duration()
        program_duration = int((program_end - program_start).total_seconds() * 1000)

        verdict = TimingVerdict(actual_start, actual_duration, program_start, program_duration)
        logger.info(f" - actual start {actual_start}, program start {program_start}")
        logger.info(
            f" - actual duration {actual_duration // 1000} sec, "
            f"program duration {program_duration // 1000} sec"
        )

        if actual_start > program_start + timedelta(seconds=start_time_offset):
            raise StartTimeMismatch(
                f"Invalid start time (actual: {actual_start}, program: {program_start}, "
                f"offset: {start_time_offset})"
            )
        if actual_duration < program_duration + duration_offset * 1000:
            raise DurationTooShort(
                f"Invalid duration (actual: {actual_duration // 1000} sec, "
                f"program: {program_duration // 1000} sec, offset: {duration_offset})"
            )
        return verdict
