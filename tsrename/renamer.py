#!/usr/bin/env python3
"""
Rename orchestrator: identify, validate and move one recording

Pipeline (one TsRenamer per input file):

    CHECK_INPUT -> EXTRACT -> RESOLVE_SERVICE -> MATCH_PROGRAM -> [VERIFY_TIME]
      -> BUILD_MACROS -> BUILD_PATH -> [CHECK_DUPLICATE | DISAMBIGUATE]
      -> [VERIFY_DROP] -> MAKE_DIRECTORIES -> MOVE -> DONE

A RenameError raised between EXTRACT and VERIFY_DROP is routed to the error
path when an error template is configured: the macro set is replaced by
{original, error}, the error templates are resolved, the name is
disambiguated and the file is moved there. Without an error template the
error propagates and the input is left untouched.

Filesystem errors while creating directories or moving always propagate.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from tsrename.clock import ClockCorrelator
from tsrename.config import RunConfig, ServiceRule, DuplicateMode
from tsrename.continuity import check_drop
from tsrename.correlator import MetadataCorrelator, ProgramIdentity
from tsrename.errors import (
    RenameError, InvalidInput, ServiceNotRecognized, TargetExists
)
from tsrename.fileops import make_directories, move_file, disambiguate
from tsrename.macro import resolve, build_macros, build_error_macros
from tsrename.matcher import ProgramMatcher, SelectedProgram
from tsrename.retry import RetryPolicy
from tsrename.syobocal import SyobocalClient
from tsrename.text import normalize_event_name
from tsrename.ts_decoder import TsDecoder

logger = logging.getLogger(__name__)


class RenameState(Enum):
    CHECK_INPUT = 'check_input'
    EXTRACT = 'extract'
    RESOLVE_SERVICE = 'resolve_service'
    MATCH_PROGRAM = 'match_program'
    VERIFY_TIME = 'verify_time'
    BUILD_MACROS = 'build_macros'
    BUILD_PATH = 'build_path'
    CHECK_DUPLICATE = 'check_duplicate'
    DISAMBIGUATE = 'disambiguate'
    VERIFY_DROP = 'verify_drop'
    MAKE_DIRECTORIES = 'make_directories'
    MOVE = 'move'
    DONE = 'done'


@dataclass(frozen=True)
class RenameResult:
    source: Path
    destination: Path
    error: Optional[RenameError] = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def information_window(size: int, config: RunConfig):
    """
    Byte offset and SIT packet window for the information search

    The window covers the packets between info_start_ratio and
    info_window_ratio of the file, counted from the aligned offset.

    Returns:
        (offset aligned to packet_size, window in packets)
    """
    offset = int(size * config.info_start_ratio)
    offset -= offset % config.packet_size
    total_packets = size // config.packet_size
    window = int(total_packets * (config.info_window_ratio - config.info_start_ratio))
    return offset, window


class TsRenamer:
    """
    Rename one recorded TS file

    Args:
        input_path: Recording to rename
        config: Base run configuration; service/keyword overrides are folded
                into a per-file copy, the base value is never changed
        guide: Guide client (defaults to SyobocalClient)
        retry: Retry policy for guide requests
        dry_run: Run the whole pipeline but only log the destination
                 (defaults to config.dry_run)
    """

    def __init__(self, input_path: Path, config: Optional[RunConfig] = None,
                 guide=None, retry: Optional[RetryPolicy] = None,
                 dry_run: Optional[bool] = None):
        self.input = Path(input_path)
        self.config = config or RunConfig()
        self.guide = guide or SyobocalClient(user=self.config.guide_user)
        self.retry = retry or RetryPolicy(self.config.retry_attempts, self.config.retry_delay)
        self.dry_run = self.config.dry_run if dry_run is None else dry_run

        self.state = RenameState.CHECK_INPUT
        self.identity: Optional[ProgramIdentity] = None
        self.service: Optional[ServiceRule] = None
        self.program: Optional[SelectedProgram] = None
        self.macros: Optional[Dict[str, str]] = None
        self.output: Optional[Path] = None

    @property
    def original(self) -> str:
        return self.input.stem

    def execute(self) -> RenameResult:
        self.check_input()

        error = None
        try:
            self.identity = self.extract()
            self.service = self.resolve_service()
            self.program = self.match_program()
            if self.config.check_time:
                self.verify_time()
            self.macros = self.build_macros()
            self.output = self.build_path(self.config.dir, self.config.file)
            self.output = self.check_output(self.output)
            if self.config.check_drop:
                self.verify_drop()
        except RenameError as e:
            if not self.config.has_error_output:
                raise
            error = e
            logger.warning(f"Error: {e}")
            logger.warning(" - Continue")
            self.output = self.build_error_path(e)

        self.place()
        self.state = RenameState.DONE
        return RenameResult(self.input, self.output, error, self.dry_run)

    def check_input(self) -> None:
        logger.info("Check Input...")
        self.state = RenameState.CHECK_INPUT
        if not self.input.is_file():
            raise InvalidInput(f"Can't find input: {self.input}")

    def extract(self) -> ProgramIdentity:
        logger.info("Get Information...")
        self.state = RenameState.EXTRACT

        size = os.path.getsize(self.input)
        offset, window = information_window(size, self.config)
        logger.debug(f" - Search from byte {offset}, SIT accepted for {window} packets")

        correlator = MetadataCorrelator(window_packets=window)
        with open(self.input, 'rb') as f:
            f.seek(offset)
            TsDecoder(f, self.config.packet_size).run(correlator)
        return correlator.result()

    def resolve_service(self) -> Optional[ServiceRule]:
        logger.info("Get Service...")
        self.state = RenameState.RESOLVE_SERVICE

        service = self.config.find_service(self.identity.service_name)
        if service is None:
            if self.config.check_service:
                raise ServiceNotRecognized(f"Can't find service: {self.identity.service_name}")
            logger.info("Can't find service")
            return None

        self.config = self.config.with_overrides(service.overrides)
        logger.info(" - Service")
        logger.info(f"   - channelId  : {service.channel_id}")
        logger.info(f"   - channelName: {service.channel_name}")
        return service

    def search_name(self) -> str:
        """Normalized event name with keyword replacements and overrides applied"""
        name = normalize_event_name(self.identity.event_name, self.config.replace)
        for keyword in self.config.match_keywords(name):
            if keyword.replace is not None:
                name = name.replace(keyword.name, keyword.replace)
            self.config = self.config.with_overrides(keyword.overrides)
        return name.strip()

    def match_program(self) -> SelectedProgram:
        logger.info("Get Program...")
        self.state = RenameState.MATCH_PROGRAM

        channel_id = self.service.channel_id if self.service else None
        matcher = ProgramMatcher(self.guide, self.retry)
        return matcher.match(self.identity, self.search_name(), channel_id)

    def verify_time(self) -> None:
        logger.info("Check Time...")
        self.state = RenameState.VERIFY_TIME
        ClockCorrelator(self.input, self.config.packet_size).verify(
            self.program.start_time,
            self.program.end_time,
            self.config.start_time_offset,
            self.config.duration_offset,
        )

    def build_macros(self) -> Dict[str, str]:
        logger.info("Get Macro...")
        self.state = RenameState.BUILD_MACROS
        user_channel_name = self.service.channel_name if self.service else None
        return build_macros(self.program, self.original, user_channel_name)

    def build_path(self, dir_template: str, file_template: str) -> Path:
        """parent / resolved dir / (resolved file or original name) + extension"""
        logger.info("Set Macro...")
        self.state = RenameState.BUILD_PATH

        parent = Path(self.config.parent) if self.config.parent else self.input.parent
        directory = resolve(dir_template, self.macros) if dir_template else ''
        name = resolve(file_template, self.macros) if file_template else ''
        if not name.strip():
            name = self.original

        output = (parent / directory / f"{name}{self.input.suffix}").resolve()
        logger.info(f" - Output: {output}")
        return output

    def check_output(self, output: Path) -> Path:
        if self.config.duplicate_mode is DuplicateMode.STRICT:
            logger.info("Check Duplication...")
            self.state = RenameState.CHECK_DUPLICATE
            if output.exists():
                raise TargetExists(f"File already exists: {output}")
            return output

        logger.info("Check Output...")
        self.state = RenameState.DISAMBIGUATE
        checked = disambiguate(output)
        if checked != output:
            logger.info(f" - Output (Checked): {checked}")
        return checked

    def verify_drop(self) -> None:
        logger.info("Check Drop...")
        self.state = RenameState.VERIFY_DROP
        check_drop(self.input, self.config.packet_size)

    def build_error_path(self, error: RenameError) -> Path:
        logger.info("Get Error Macro...")
        self.macros = build_error_macros(self.original, error.category.value)
        output = self.build_path(self.config.error_dir, self.config.error_file)

        self.state = RenameState.DISAMBIGUATE
        checked = disambiguate(output)
        if checked != output:
            logger.info(f" - Output (Checked): {checked}")
        return checked

    def place(self) -> None:
        if self.dry_run:
            logger.info(f"[DRY RUN] {self.input}")
            logger.info(f"  -> {self.output}")
            return

        logger.info("Make Directories...")
        self.state = RenameState.MAKE_DIRECTORIES
        make_directories(self.output.parent)

        logger.info("Rename...")
        self.state = RenameState.MOVE
        move_file(self.input, self.output)
        logger.info(f" - Renamed: {self.output}")
