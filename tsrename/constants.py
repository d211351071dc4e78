#!/usr/bin/env python3
"""
Shared constants for the TS renaming pipeline

Single source of truth for packet geometry, PID/table ids, clock arithmetic,
and the bracket rules used by title normalization.
DO NOT duplicate these values in other modules - import from here instead.
"""

# Transport packet geometry
SYNC_BYTE = 0x47
TS_PACKET_SIZE = 188
# 188 plain TS, 192 BDAV/M2TS (4-byte timestamp prefix), 204 (16-byte parity suffix)
PACKET_SIZES = (188, 192, 204)
SYNC_OFFSETS = {188: 0, 192: 4, 204: 0}

# Packets per read chunk; memory use is packet_size * CHUNK_PACKETS
CHUNK_PACKETS = 10000

# PIDs carrying the tables the correlator listens to
PAT_PID = 0x0000
SDT_PID = 0x0011
EIT_PIDS = (0x0012, 0x0026, 0x0027)
TIME_PID = 0x0014
SIT_PID = 0x001F
NULL_PID = 0x1FFF

# Table ids
PAT_TABLE_ID = 0x00
SDT_ACTUAL_TABLE_ID = 0x42
EIT_PF_ACTUAL_TABLE_ID = 0x4E
TDT_TABLE_ID = 0x70
TOT_TABLE_ID = 0x73
SIT_TABLE_ID = 0x7F

# Descriptor tags
SERVICE_DESCRIPTOR = 0x48
SHORT_EVENT_DESCRIPTOR = 0x4D
PARTIAL_TS_TIME_DESCRIPTOR = 0xC3

# PIDs below this value are reserved/system streams; drops there are not reported
DROP_PID_THRESHOLD = 0x30

# Program Clock Reference: 33-bit base counter at 90 kHz
PCR_WRAP = 1 << 33
PCR_TICKS_PER_MS = 90

# Trailing window (in packets) scanned for the last PCR sample
END_PCR_WINDOW_PACKETS = 65535

# Information search defaults
INFO_START_RATIO = 0.02
INFO_WINDOW_RATIO = 0.05

# Guide search window around the observed start time
GUIDE_SEARCH_MARGIN_SECONDS = 60 * 60
SEARCH_FRAGMENT_LENGTH = 5

# Bounded retry for guide requests
RETRY_ATTEMPTS = 2
RETRY_DELAY_SECONDS = 60

# Annotation brackets removed from event names (content dropped)
STRIP_BRACKETS = [
    ('[', ']'),
    ('【', '】'),
    ('<', '>'),
    ('(', ')'),
]

# Quotation brackets unwrapped from event names (content kept, padded with spaces)
UNWRAP_BRACKETS = [
    ('「', '」'),
    ('『', '』'),
]

# Characters illegal in file or directory names on common filesystems
ILLEGAL_PATH_CHARS = '\\/:?*|"<>'

# Recording file extensions the CLI accepts
ACCEPTED_EXTENSIONS = ('.ts', '.m2ts')

# Season names indexed by quarter (0-based), as used in Japanese anime listings
SEASONS = ['春', '夏', '秋', '冬']
