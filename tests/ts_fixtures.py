#!/usr/bin/env python3
"""
Builders for synthetic transport stream bytes used across the test suite

Names given as str are written as plain UTF-8; tests that decode them patch
tsrename.ts_decoder.decode_arib_string with utf8_string. Names given as
bytes are written unchanged, for ARIB coded text.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Tuple, Union

PACKET_SIZE = 188
MJD_EPOCH = date(1858, 11, 17)


def utf8_string(data: bytes) -> str:
    return data.decode('utf-8')


def bcd(value: int) -> int:
    return (value // 10) << 4 | (value % 10)


def encode_time(when: datetime) -> bytes:
    mjd = (when.date() - MJD_EPOCH).days
    return mjd.to_bytes(2, 'big') + bytes([bcd(when.hour), bcd(when.minute), bcd(when.second)])


def encode_duration(seconds: int) -> bytes:
    return bytes([bcd(seconds // 3600), bcd(seconds // 60 % 60), bcd(seconds % 60)])


def packet(pid: int, cc: int = 0, payload: Optional[bytes] = None,
           pusi: bool = False, pcr: Optional[int] = None, tei: bool = False) -> bytes:
    """One 188-byte packet; payload is padded with 0xff stuffing"""
    afc = (0x02 if pcr is not None else 0) | (0x01 if payload is not None else 0)
    header = bytes([
        0x47,
        (0x80 if tei else 0) | (0x40 if pusi else 0) | (pid >> 8),
        pid & 0xff,
        afc << 4 | (cc & 0x0f),
    ])

    body = b''
    if pcr is not None:
        pcr_field = ((pcr << 15) | (0x3f << 9)).to_bytes(6, 'big')
        room = 184 - len(payload or b'')
        adaptation = bytes([0x10]) + pcr_field
        adaptation += b'\xff' * (room - 1 - len(adaptation))
        body += bytes([len(adaptation)]) + adaptation
    if payload is not None:
        body += payload
    return (header + body).ljust(PACKET_SIZE, b'\xff')


def section(table_id: int, body: bytes, syntax: bool = True, crc: bool = True) -> bytes:
    if crc:
        body += b'\x00\x00\x00\x00'
    flags = (0x8000 if syntax else 0) | 0x3000
    return bytes([table_id]) + (flags | len(body)).to_bytes(2, 'big') + body


def section_packet(pid: int, data: bytes, cc: int = 0) -> bytes:
    """Single packet carrying one whole section (pointer_field 0)"""
    return packet(pid, cc, b'\x00' + data, pusi=True)


def pat_section(transport_stream_id: int, programs: List[int]) -> bytes:
    body = transport_stream_id.to_bytes(2, 'big') + b'\xc1\x00\x00'
    for i, program_number in enumerate(programs):
        body += program_number.to_bytes(2, 'big') + (0xe100 + i).to_bytes(2, 'big')
    return section(0x00, body)


def encode_string(value) -> bytes:
    """UTF-8 for str; bytes (already ARIB coded) pass through"""
    return value if isinstance(value, bytes) else value.encode('utf-8')


def service_descriptor(name) -> bytes:
    encoded = encode_string(name)
    payload = bytes([0x01, 0]) + bytes([len(encoded)]) + encoded
    return bytes([0x48, len(payload)]) + payload


def short_event_descriptor(name) -> bytes:
    encoded = encode_string(name)
    payload = b'jpn' + bytes([len(encoded)]) + encoded + b'\x00'
    return bytes([0x4d, len(payload)]) + payload


def _loop_length(descriptors: bytes) -> bytes:
    return (0x8000 | len(descriptors)).to_bytes(2, 'big')


def sdt_section(transport_stream_id: int, original_network_id: int,
                services: Dict[int, Union[str, bytes]]) -> bytes:
    body = transport_stream_id.to_bytes(2, 'big') + b'\xc1\x00\x00'
    body += original_network_id.to_bytes(2, 'big') + b'\xff'
    for service_id, name in services.items():
        descriptors = service_descriptor(name)
        body += service_id.to_bytes(2, 'big') + b'\xfc' + _loop_length(descriptors) + descriptors
    return section(0x42, body)


def eit_section(service_id: int, transport_stream_id: int, original_network_id: int,
                events: List[Tuple[int, datetime, int, str]], section_number: int = 0) -> bytes:
    body = service_id.to_bytes(2, 'big') + b'\xc1' + bytes([section_number, 1])
    body += transport_stream_id.to_bytes(2, 'big') + original_network_id.to_bytes(2, 'big')
    body += b'\x01\x4e'
    for event_id, start, duration, name in events:
        descriptors = short_event_descriptor(name)
        body += event_id.to_bytes(2, 'big') + encode_time(start) + encode_duration(duration)
        body += _loop_length(descriptors) + descriptors
    return section(0x4e, body)


def tdt_section(when: datetime) -> bytes:
    return section(0x70, encode_time(when), syntax=False, crc=False)


def sit_section(service_name: Optional[str], event_name: Optional[str],
                start: Optional[datetime]) -> bytes:
    descriptors = b''
    if service_name is not None:
        descriptors += service_descriptor(service_name)
    if event_name is not None:
        descriptors += short_event_descriptor(event_name)
    if start is not None:
        payload = b'\x00' + encode_time(start) + encode_duration(0) + b'\x00\x00\x00'
        descriptors += bytes([0xc3, len(payload)]) + payload

    body = b'\xff\xff' + b'\xc1\x00\x00'
    body += (0xf000).to_bytes(2, 'big')  # empty transmission_info_loop
    body += (0x0400).to_bytes(2, 'big') + (0x8000 | len(descriptors)).to_bytes(2, 'big')
    body += descriptors
    return section(0x7f, body)


def pcr_packet(pcr: int, pid: int = 0x1ff) -> bytes:
    return packet(pid, pcr=pcr)


def write_ts(path, packets: List[bytes]):
    with open(path, 'wb') as f:
        for p in packets:
            f.write(p)
