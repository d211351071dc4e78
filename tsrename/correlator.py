#!/usr/bin/env python3
"""
Metadata correlator: identify the program a recording contains

Broadcast tables arrive independently and in no fixed order across kinds.
The correlator runs a strict two-phase state machine:

    COLLECTING_STRUCTURE  PAT and SDT fill four write-once slots
                          (original_network_id, transport_stream_id,
                          service_id candidate, services map)
            |
            | all slots filled and the candidate is in the services map
            v
    AWAITING_EVENT        EIT present/following for exactly that
                          onid/tsid/sid triple; PAT/SDT are ignored
            |
            v
    RESOLVED | FAILED     terminal; `done` stops the decoder

A SIT (partial TS, one self-describing record) can resolve the identity
from either non-terminal state, but only within the packet window. Past the
window, PAT/SDT/EIT keep being read until the end of input. result() at the
end of input moves an unresolved correlator to FAILED.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from tsrename.errors import InformationNotFound, InformationWindowExceeded
from tsrename.ts_decoder import (
    StreamConsumer, DecodedPacket, PatSection, SdtSection, EitSection, SitSection
)

logger = logging.getLogger(__name__)


class CorrelatorState(Enum):
    COLLECTING_STRUCTURE = 'collecting_structure'
    AWAITING_EVENT = 'awaiting_event'
    RESOLVED = 'resolved'
    FAILED = 'failed'


@dataclass(frozen=True)
class ServiceIdentity:
    original_network_id: int
    transport_stream_id: int
    service_id: int


@dataclass(frozen=True)
class ProgramIdentity:
    service_name: str
    event_name: str
    start_time: datetime
    duration_seconds: Optional[int] = None


class MetadataCorrelator(StreamConsumer):
    """
    Fuse PAT/SDT/EIT/SIT sections into one ProgramIdentity

    Args:
        window_packets: Packets during which a SIT is accepted (None = no bound).
                        A stream that showed neither PAT nor SDT fails with
                        InformationWindowExceeded once this is passed
    """

    wants_sections = True

    def __init__(self, window_packets: Optional[int] = None):
        self.state = CorrelatorState.COLLECTING_STRUCTURE
        self.window_packets = window_packets
        self.packets_seen = 0
        self.window_closed = False

        self.original_network_id: Optional[int] = None
        self.transport_stream_id: Optional[int] = None
        self.service_id: Optional[int] = None
        self.services: Optional[Dict[int, Optional[str]]] = None

        self.identity: Optional[ProgramIdentity] = None
        self.error: Optional[InformationNotFound] = None

    @property
    def done(self) -> bool:
        return self.state in (CorrelatorState.RESOLVED, CorrelatorState.FAILED)

    @property
    def service_identity(self) -> Optional[ServiceIdentity]:
        if None in (self.original_network_id, self.transport_stream_id, self.service_id):
            return None
        return ServiceIdentity(self.original_network_id, self.transport_stream_id, self.service_id)

    def on_packet(self, packet: DecodedPacket) -> None:
        if self.done:
            return
        self.packets_seen += 1
        if self.window_closed or self.window_packets is None:
            return
        if self.packets_seen > self.window_packets:
            self.window_closed = True
            logger.debug(f"SIT window closed after {self.window_packets} packets")

    def on_section(self, section) -> None:
        if self.done:
            return

        if isinstance(section, SitSection):
            self._on_sit(section)
        elif self.state is CorrelatorState.COLLECTING_STRUCTURE:
            if isinstance(section, PatSection):
                self._on_pat(section)
            elif isinstance(section, SdtSection):
                self._on_sdt(section)
        elif isinstance(section, EitSection):
            self._on_eit(section)

    def _on_pat(self, pat: PatSection):
        if self.transport_stream_id is None:
            self.transport_stream_id = pat.transport_stream_id
        if self.service_id is None and pat.program_numbers:
            self.service_id = pat.program_numbers[0]
            logger.debug(f"Service id candidate: {self.service_id}")
        self._check_structure()

    def _on_sdt(self, sdt: SdtSection):
        if self.original_network_id is None:
            self.original_network_id = sdt.original_network_id
        if self.services is None:
            self.services = {}
        # A service's name is write-once once non-empty; later sections add new ids
        for service_id, name in sdt.services.items():
            if not self.services.get(service_id):
                self.services[service_id] = name
        self._check_structure()

    def _check_structure(self):
        if None in (self.original_network_id, self.transport_stream_id, self.service_id):
            return
        if self.services is None or self.service_id not in self.services:
            return
        self.state = CorrelatorState.AWAITING_EVENT
        logger.debug(
            f"Structure resolved: onid={self.original_network_id} "
            f"tsid={self.transport_stream_id} sid={self.service_id}"
        )

    def _on_eit(self, eit: EitSection):
        if eit.section_number != 0:
            return
        if (eit.original_network_id, eit.transport_stream_id, eit.service_id) != (
                self.original_network_id, self.transport_stream_id, self.service_id):
            return

        for event in eit.events:
            if event.event_name and event.start_time:
                self._resolve(ProgramIdentity(
                    service_name=self.services[self.service_id] or '',
                    event_name=event.event_name,
                    start_time=event.start_time,
                    duration_seconds=event.duration,
                ))
                return

    def _on_sit(self, sit: SitSection):
        if self.window_closed:
            return
        if not (sit.service_name and sit.event_name and sit.start_time):
            return
        self._resolve(ProgramIdentity(
            service_name=sit.service_name,
            event_name=sit.event_name,
            start_time=sit.start_time,
        ))

    def _resolve(self, identity: ProgramIdentity):
        self.identity = identity
        self.state = CorrelatorState.RESOLVED
        logger.info(" - Information")
        logger.info(f"   - serviceName: {identity.service_name}")
        logger.info(f"   - eventName  : {identity.event_name}")
        logger.info(f"   - startTime  : {identity.start_time}")

    def _fail(self, error: InformationNotFound):
        self.error = error
        self.state = CorrelatorState.FAILED

    def result(self) -> ProgramIdentity:
        """Return the resolved identity or raise the failure; call at end of input"""
        if self.state is CorrelatorState.RESOLVED:
            return self.identity
        if self.state is not CorrelatorState.FAILED:
            if self.window_closed and self.transport_stream_id is None and self.original_network_id is None:
                self._fail(InformationWindowExceeded(
                    f"Can't find information in {self.window_packets} packets"
                ))
            else:
                self._fail(InformationNotFound("Can't find information"))
        raise self.error
