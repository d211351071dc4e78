#!/usr/bin/env python3
"""
Failure categories surfaced to the rename orchestrator

Every domain failure is a RenameError carrying one FailureCategory. The
category value is what ends up in the ${error} macro on the error path.
"""

from enum import Enum


class FailureCategory(Enum):
    INVALID_INPUT = 'input'
    INFORMATION_NOT_FOUND = 'information'
    SERVICE_NOT_RECOGNIZED = 'service'
    PROGRAM_NOT_FOUND = 'program'
    NO_CLOCK_REFERENCE = 'clock'
    START_TIME_MISMATCH = 'start_time'
    DURATION_TOO_SHORT = 'duration'
    TARGET_EXISTS = 'duplication'
    PACKET_DROP_DETECTED = 'drop'


class RenameError(Exception):
    """Base class for failures the orchestrator knows how to route"""
    category: FailureCategory = None


class InvalidInput(RenameError):
    category = FailureCategory.INVALID_INPUT


class InformationNotFound(RenameError):
    category = FailureCategory.INFORMATION_NOT_FOUND


class InformationWindowExceeded(InformationNotFound):
    """Program information did not appear inside the packet-index window"""


class ServiceNotRecognized(RenameError):
    category = FailureCategory.SERVICE_NOT_RECOGNIZED


class ProgramNotFound(RenameError):
    category = FailureCategory.PROGRAM_NOT_FOUND


class GuideUnavailable(ProgramNotFound):
    """Guide service kept failing after every retry attempt failed"""


class NoClockReference(RenameError):
    category = FailureCategory.NO_CLOCK_REFERENCE


class StartTimeMismatch(RenameError):
    category = FailureCategory.START_TIME_MISMATCH


class DurationTooShort(RenameError):
    category = FailureCategory.DURATION_TOO_SHORT


class TargetExists(RenameError):
    category = FailureCategory.TARGET_EXISTS


class PacketDropDetected(RenameError):
    category = FailureCategory.PACKET_DROP_DETECTED

    def __init__(self, pid: int):
        super().__init__(f"Packet drop detected at PID 0x{pid:04x}")
        self.pid = pid
