#!/usr/bin/env python3
"""
Transport stream decoder

Turns a recording into typed records for the correlators:

  - DecodedPacket for every transport packet (PID, continuity counter, PCR)
  - one DecodedSection variant per completed PAT/SDT/EIT/TDT/TOT/SIT section

Delivery is push-based and synchronous: TsDecoder.run(consumer) hands one
record at a time to the consumer and checks consumer.done after every
callback. Once stop() has been called no further callback fires.

The file is read in bounded chunks (CHUNK_PACKETS units at a time), never
as a whole.
"""

import logging
import typing
from datetime import datetime
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Tuple

import ariblib.aribstr

from tsrename.constants import (
    SYNC_BYTE, TS_PACKET_SIZE, PACKET_SIZES, SYNC_OFFSETS, CHUNK_PACKETS,
    PAT_PID, SDT_PID, EIT_PIDS, TIME_PID, SIT_PID, NULL_PID,
    PAT_TABLE_ID, SDT_ACTUAL_TABLE_ID, EIT_PF_ACTUAL_TABLE_ID,
    TDT_TABLE_ID, TOT_TABLE_ID, SIT_TABLE_ID,
    SERVICE_DESCRIPTOR, SHORT_EVENT_DESCRIPTOR, PARTIAL_TS_TIME_DESCRIPTOR,
)

logger = logging.getLogger(__name__)

SECTION_PIDS = frozenset((PAT_PID, SDT_PID, TIME_PID, SIT_PID) + EIT_PIDS)
CRC_SIZE = 4


class DecodedPacket(typing.NamedTuple):
    pid: int
    continuity_counter: Optional[int]  # None when the counter does not apply
    has_pcr: bool
    pcr_value: Optional[int]           # 33-bit PCR base


class PatSection(typing.NamedTuple):
    transport_stream_id: int
    program_numbers: Tuple[int, ...]


class SdtSection(typing.NamedTuple):
    transport_stream_id: int
    original_network_id: int
    services: Dict[int, Optional[str]]  # service_id -> service_name, in broadcast order


class EitEvent(typing.NamedTuple):
    event_id: int
    start_time: Optional[datetime]
    duration: Optional[int]  # seconds
    event_name: Optional[str]


class EitSection(typing.NamedTuple):
    service_id: int
    transport_stream_id: int
    original_network_id: int
    section_number: int  # 0 = present, 1 = following
    events: Tuple[EitEvent, ...]


class TimeSection(typing.NamedTuple):
    table: str  # 'TDT' or 'TOT'
    time: datetime


class SitSection(typing.NamedTuple):
    service_name: Optional[str]
    event_name: Optional[str]
    start_time: Optional[datetime]


class RawSection(typing.NamedTuple):
    table_id: int
    section_syntax_indicator: bool
    body: bytes


class BytesParser:
    """Big-endian bit reader over a section body"""

    def __init__(self, buffer: bytes):
        self.buffer = buffer
        self.bytepos = 0
        self.bitpos = 0

    def remaining(self) -> int:
        return len(self.buffer) - self.bytepos

    def get_bytes(self, n_bytes: int) -> bytes:
        if self.bitpos != 0:
            raise ValueError("get_bytes() on a non byte-aligned position")
        if self.bytepos + n_bytes > len(self.buffer):
            raise ValueError("read past end of section")
        ret = self.buffer[self.bytepos:self.bytepos + n_bytes]
        self.bytepos += n_bytes
        return ret

    def get_int(self, n_bits: int) -> int:
        ret = 0
        for _ in range(n_bits):
            if self.bytepos >= len(self.buffer):
                raise ValueError("read past end of section")
            bit = (self.buffer[self.bytepos] >> (7 - self.bitpos)) & 0x01
            ret = (ret << 1) | bit
            self.skip(1)
        return ret

    def skip(self, n_bits: int):
        bitpos = self.bitpos + n_bits
        self.bytepos += bitpos // 8
        self.bitpos = bitpos % 8


def decode_arib_string(data: bytes) -> str:
    """Decode an ARIB STD-B24 8-unit coded string"""
    if not data:
        return ''
    return str(ariblib.aribstr.AribString(data)).strip()


def _bcd(value: int) -> int:
    return (value >> 4) * 10 + (value & 0x0f)


def decode_time(data: bytes) -> Optional[datetime]:
    """
    Decode a 40-bit MJD + BCD(hh:mm:ss) timestamp (JST in ARIB broadcasts)

    Returns None for the "undefined" pattern (all bits set) or invalid values.
    """
    if len(data) < 5 or data[:5] == b'\xff' * 5:
        return None
    mjd = int.from_bytes(data[:2], 'big')
    y_prime = int((mjd - 15078.2) / 365.25)
    m_prime = int((mjd - 14956.1 - int(y_prime * 365.25)) / 30.6001)
    day = mjd - 14956 - int(y_prime * 365.25) - int(m_prime * 30.6001)
    k = 1 if m_prime in (14, 15) else 0
    year = y_prime + k + 1900
    month = m_prime - 1 - k * 12
    try:
        return datetime(year, month, day, _bcd(data[2]), _bcd(data[3]), _bcd(data[4]))
    except ValueError:
        return None


def decode_duration(data: bytes) -> Optional[int]:
    """Decode a 24-bit BCD hh:mm:ss duration into seconds"""
    if len(data) < 3 or data[:3] == b'\xff' * 3:
        return None
    return _bcd(data[0]) * 3600 + _bcd(data[1]) * 60 + _bcd(data[2])


def iter_descriptors(buffer: bytes) -> Iterator[Tuple[int, bytes]]:
    """Yield (descriptor_tag, payload) pairs from a descriptor loop"""
    pos = 0
    while pos + 2 <= len(buffer):
        tag = buffer[pos]
        length = buffer[pos + 1]
        payload = buffer[pos + 2:pos + 2 + length]
        if len(payload) < length:
            break
        yield tag, payload
        pos += 2 + length


def parse_service_descriptor(payload: bytes) -> Optional[str]:
    parser = BytesParser(payload)
    parser.get_int(8)  # service_type
    parser.get_bytes(parser.get_int(8))  # service_provider_name
    return decode_arib_string(parser.get_bytes(parser.get_int(8)))


def parse_short_event_descriptor(payload: bytes) -> Optional[str]:
    parser = BytesParser(payload)
    parser.get_bytes(3)  # ISO_639_language_code
    return decode_arib_string(parser.get_bytes(parser.get_int(8)))


def parse_pat(body: bytes) -> PatSection:
    parser = BytesParser(body)
    transport_stream_id = parser.get_int(16)
    parser.skip(24)  # version, section numbers

    program_numbers = []
    while parser.remaining() >= 4 + CRC_SIZE:
        program_number = parser.get_int(16)
        parser.skip(16)  # reserved + PMT PID
        if program_number != 0:
            program_numbers.append(program_number)
    return PatSection(transport_stream_id, tuple(program_numbers))


def parse_sdt(body: bytes) -> SdtSection:
    parser = BytesParser(body)
    transport_stream_id = parser.get_int(16)
    parser.skip(24)  # version, section numbers
    original_network_id = parser.get_int(16)
    parser.skip(8)

    services = {}
    while parser.remaining() >= 5 + CRC_SIZE:
        service_id = parser.get_int(16)
        parser.skip(8)   # EIT flags
        parser.skip(4)   # running_status, free_CA_mode
        descriptors = parser.get_bytes(parser.get_int(12))

        service_name = None
        for tag, payload in iter_descriptors(descriptors):
            if tag == SERVICE_DESCRIPTOR:
                service_name = parse_service_descriptor(payload)
        services[service_id] = service_name
    return SdtSection(transport_stream_id, original_network_id, services)


def parse_eit(body: bytes) -> EitSection:
    parser = BytesParser(body)
    service_id = parser.get_int(16)
    parser.skip(8)  # version
    section_number = parser.get_int(8)
    parser.skip(8)  # last_section_number
    transport_stream_id = parser.get_int(16)
    original_network_id = parser.get_int(16)
    parser.skip(16)  # segment_last_section_number, last_table_id

    events = []
    while parser.remaining() >= 12 + CRC_SIZE:
        event_id = parser.get_int(16)
        start_time = decode_time(parser.get_bytes(5))
        duration = decode_duration(parser.get_bytes(3))
        parser.skip(4)  # running_status, free_CA_mode
        descriptors = parser.get_bytes(parser.get_int(12))

        event_name = None
        for tag, payload in iter_descriptors(descriptors):
            if tag == SHORT_EVENT_DESCRIPTOR:
                event_name = parse_short_event_descriptor(payload)
        events.append(EitEvent(event_id, start_time, duration, event_name))
    return EitSection(service_id, transport_stream_id, original_network_id,
                      section_number, tuple(events))


def parse_sit(body: bytes) -> Optional[SitSection]:
    """Decode the first service of a Selection Information Table (partial TS)"""
    parser = BytesParser(body)
    parser.skip(16 + 24)  # reserved, version, section numbers
    parser.skip(4)
    parser.get_bytes(parser.get_int(12))  # transmission_info_loop

    if parser.remaining() < 4 + CRC_SIZE:
        return None

    parser.get_int(16)  # service_id
    parser.skip(4)
    descriptors = parser.get_bytes(parser.get_int(12))

    service_name = event_name = start_time = None
    for tag, payload in iter_descriptors(descriptors):
        if tag == SERVICE_DESCRIPTOR:
            service_name = parse_service_descriptor(payload)
        elif tag == SHORT_EVENT_DESCRIPTOR:
            event_name = parse_short_event_descriptor(payload)
        elif tag == PARTIAL_TS_TIME_DESCRIPTOR:
            # event_version_number precedes event_start_time
            start_time = decode_time(payload[1:6])
    return SitSection(service_name, event_name, start_time)


def decode_section(pid: int, section: RawSection):
    """Map a raw section to its typed record, or None for tables nobody reads"""
    table_id = section.table_id
    try:
        if pid == PAT_PID and table_id == PAT_TABLE_ID:
            return parse_pat(section.body)
        if pid == SDT_PID and table_id == SDT_ACTUAL_TABLE_ID:
            return parse_sdt(section.body)
        if pid in EIT_PIDS and table_id == EIT_PF_ACTUAL_TABLE_ID:
            return parse_eit(section.body)
        if pid == TIME_PID and table_id == TDT_TABLE_ID:
            time = decode_time(section.body[:5])
            return TimeSection('TDT', time) if time else None
        if pid == TIME_PID and table_id == TOT_TABLE_ID:
            time = decode_time(section.body[:5])
            return TimeSection('TOT', time) if time else None
        if pid == SIT_PID and table_id == SIT_TABLE_ID:
            return parse_sit(section.body)
    except (ValueError, IndexError, KeyError) as e:
        logger.debug(f"Malformed section (PID 0x{pid:04x}, table 0x{table_id:02x}): {e}")
    return None


class SectionAssembler:
    """Reassemble PSI/SI sections carried across packets of one PID"""

    def __init__(self):
        self.buffer: Optional[bytes] = None  # None while the section start is unknown

    def feed(self, payload_unit_start: bool, payload: bytes) -> List[RawSection]:
        if not payload:
            return []

        if payload_unit_start:
            pointer = payload[0]
            if self.buffer is not None:
                self.buffer += payload[1:1 + pointer]
                sections = self._drain()
            else:
                sections = []
            self.buffer = payload[1 + pointer:]
        else:
            if self.buffer is None:
                return []
            self.buffer += payload
            sections = []

        return sections + self._drain()

    def _drain(self) -> List[RawSection]:
        sections = []
        while self.buffer is not None and len(self.buffer) >= 3:
            if self.buffer[0] == 0xff:
                # Stuffing; the rest of this payload carries nothing
                self.buffer = None
                break
            header = int.from_bytes(self.buffer[1:3], 'big')
            length = header & 0x0fff
            if len(self.buffer) < 3 + length:
                break
            sections.append(RawSection(
                self.buffer[0], header >> 15 != 0, self.buffer[3:3 + length],
            ))
            self.buffer = self.buffer[3 + length:]
        return sections


def parse_packet(buffer: bytes) -> Optional[Tuple[DecodedPacket, bool, Optional[bytes]]]:
    """
    Decode one 188-byte transport packet

    Returns (DecodedPacket, payload_unit_start_indicator, payload) or None for
    packets flagged with a transport error or an invalid adaptation field.
    """
    header = int.from_bytes(buffer[:4], 'big')
    if header & 0x800000:
        return None
    payload_unit_start = header & 0x400000 != 0
    pid = (header >> 8) & 0x1fff
    adaptation_field_control = (header >> 4) & 0x03
    if adaptation_field_control == 0:
        return None

    has_pcr = False
    pcr = None
    payload_offset = 4
    if adaptation_field_control & 0x02:
        adaptation_field_length = buffer[4]
        if adaptation_field_length > 183:
            return None
        if adaptation_field_length >= 7 and buffer[5] & 0x10:
            has_pcr = True
            pcr = int.from_bytes(buffer[6:12], 'big') >> 15
        payload_offset = 5 + adaptation_field_length

    has_payload = adaptation_field_control & 0x01 != 0
    payload = buffer[payload_offset:] if has_payload else None
    continuity_counter = header & 0x0f if has_payload and pid != NULL_PID else None

    return DecodedPacket(pid, continuity_counter, has_pcr, pcr), payload_unit_start, payload


class StreamConsumer:
    """Base class for anything fed by TsDecoder.run()"""

    wants_sections = False

    def on_packet(self, packet: DecodedPacket) -> None:
        pass

    def on_section(self, section) -> None:
        pass

    @property
    def done(self) -> bool:
        return False


class TsDecoder:
    """
    Chunked transport stream reader with push delivery

    Args:
        f: Binary file object positioned where decoding should start
        packet_size: 188, 192 or 204
        chunk_packets: Packet units read per chunk
        on_progress: Optional callback(bytes_read) invoked after each chunk
    """

    def __init__(self, f: BinaryIO, packet_size: int = TS_PACKET_SIZE,
                 chunk_packets: int = CHUNK_PACKETS,
                 on_progress: Optional[Callable[[int], None]] = None):
        if packet_size not in PACKET_SIZES:
            raise ValueError(f"Unsupported packet size: {packet_size}")
        self.f = f
        self.packet_size = packet_size
        self.sync_offset = SYNC_OFFSETS[packet_size]
        self.chunk_size = packet_size * chunk_packets
        self.on_progress = on_progress
        self.bytes_read = 0
        self.packet_count = 0
        self.stopped = False
        self.assemblers: Dict[int, SectionAssembler] = {}

    def stop(self):
        """Stop delivery; safe to call any number of times"""
        self.stopped = True

    def iter_units(self) -> Iterator[bytes]:
        """Yield 188-byte packets, resynchronising on the sync byte"""
        size = self.packet_size
        sync = self.sync_offset
        buf = b''
        while not self.stopped:
            chunk = self.f.read(self.chunk_size)
            if not chunk:
                break
            self.bytes_read += len(chunk)
            if self.on_progress:
                self.on_progress(self.bytes_read)

            buf += chunk
            pos = 0
            end = len(buf)
            while pos + size <= end:
                if buf[pos + sync] != SYNC_BYTE:
                    idx = buf.find(SYNC_BYTE, pos + sync + 1)
                    if idx == -1:
                        pos = end - sync
                        break
                    pos = idx - sync
                    continue
                yield buf[pos + sync:pos + sync + TS_PACKET_SIZE]
                pos += size
                if self.stopped:
                    return
            buf = buf[pos:]

    def run(self, consumer: StreamConsumer) -> None:
        """Feed every packet (and section, if wanted) to consumer until done"""
        if consumer.done:
            self.stop()
        for unit in self.iter_units():
            parsed = parse_packet(unit)
            if parsed is None:
                continue
            packet, payload_unit_start, payload = parsed
            self.packet_count += 1

            consumer.on_packet(packet)
            if consumer.done:
                self.stop()
                return

            if not consumer.wants_sections or payload is None or packet.pid not in SECTION_PIDS:
                continue

            assembler = self.assemblers.setdefault(packet.pid, SectionAssembler())
            for raw in assembler.feed(payload_unit_start, payload):
                section = decode_section(packet.pid, raw)
                if section is None:
                    continue
                consumer.on_section(section)
                if consumer.done:
                    self.stop()
                    return
