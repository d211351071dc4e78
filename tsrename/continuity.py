#!/usr/bin/env python3
"""
Continuity monitor: detect dropped packets

Each PID carries a 4-bit continuity counter that advances by one (mod 16)
on every packet with payload. A repeated value is a permitted duplicate;
any other step means packets were lost. PIDs below DROP_PID_THRESHOLD are
system streams and never reported.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from tsrename.constants import DROP_PID_THRESHOLD, TS_PACKET_SIZE
from tsrename.errors import PacketDropDetected
from tsrename.ts_decoder import StreamConsumer, TsDecoder, DecodedPacket

logger = logging.getLogger(__name__)

# Log progress every N chunks
PROGRESS_EVERY = 10


class ContinuityMonitor(StreamConsumer):
    """Track continuity counters per PID and stop at the first reportable drop"""

    def __init__(self, threshold: int = DROP_PID_THRESHOLD):
        self.threshold = threshold
        self.counters: Dict[int, int] = {}
        self.drop_pid: Optional[int] = None
        self.ignored_drops = 0

    @property
    def done(self) -> bool:
        return self.drop_pid is not None

    def on_packet(self, packet: DecodedPacket) -> None:
        counter = packet.continuity_counter
        if counter is None:
            return

        previous = self.counters.get(packet.pid)
        self.counters[packet.pid] = counter
        if previous is None or counter == previous or counter == (previous + 1) % 16:
            return

        if packet.pid < self.threshold:
            self.ignored_drops += 1
            logger.debug(f"Ignoring drop on reserved PID 0x{packet.pid:04x}")
            return
        self.drop_pid = packet.pid

    def check(self) -> None:
        if self.drop_pid is not None:
            raise PacketDropDetected(self.drop_pid)


def check_drop(path: Path, packet_size: int = TS_PACKET_SIZE) -> None:
    """
    Stream the whole file once and raise PacketDropDetected on the first drop

    Progress (bytes read of total size) is logged as chunks are consumed.
    """
    size = os.path.getsize(path)
    chunks = 0

    def progress(bytes_read: int):
        nonlocal chunks
        chunks += 1
        if chunks % PROGRESS_EVERY == 0:
            percent = bytes_read * 100 // size if size else 100
            logger.info(f" - Check {bytes_read} of {size} [{percent}%]")

    monitor = ContinuityMonitor()
    with open(path, 'rb') as f:
        decoder = TsDecoder(f, packet_size, on_progress=progress)
        decoder.run(monitor)

    if monitor.done:
        logger.info(f" - Find drop at PID 0x{monitor.drop_pid:04x}")
    else:
        logger.info(f" - Done {decoder.bytes_read} of {size} [100%]")
    monitor.check()
