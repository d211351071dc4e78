#!/usr/bin/env python3
"""
Run configuration

Loaded once from YAML into a frozen RunConfig. Per file, the base config is
folded with the overrides of the matched service and keyword rules into a
new RunConfig; the base value is never mutated, so nothing leaks from one
input file to the next.

Example config.yaml:

    dir: "${title}"
    file: "${title}([ 第${count2}話])([ 「${subTitle}」])"
    error_dir: "_error"
    error_file: "${original}_${error}"
    duplicate_mode: disambiguate        # or strict
    check_time: true
    start_time_offset: 0
    duration_offset: -5
    replace:
      - {find: "アニメ ", replace: ""}
    services:
      - {name: "ＴＯＫＹＯ　ＭＸ", channel_id: 19, channel_name: "MX"}
    keywords:
      - {name: "劇場版", check_time: false}
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from tsrename.constants import (
    TS_PACKET_SIZE, PACKET_SIZES, INFO_START_RATIO, INFO_WINDOW_RATIO,
    RETRY_ATTEMPTS, RETRY_DELAY_SECONDS
)
from tsrename.text import to_half

logger = logging.getLogger(__name__)

# Keys a service or keyword rule may override for the files it matches
OVERRIDE_KEYS = ('check_time', 'check_duplication', 'check_drop',
                 'start_time_offset', 'duration_offset')
FLAG_OVERRIDE_KEYS = ('check_time', 'check_duplication', 'check_drop')


class DuplicateMode(Enum):
    STRICT = 'strict'
    DISAMBIGUATE = 'disambiguate'


@dataclass(frozen=True)
class ServiceRule:
    """Maps a broadcast service name to a guide channel"""
    name: str
    channel_id: Optional[int] = None
    channel_name: Optional[str] = None
    overrides: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class KeywordRule:
    """Event-name keyword with an optional replacement and option overrides"""
    name: str
    replace: Optional[str] = None
    overrides: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class RunConfig:
    dir: str = '${title}'
    file: str = '${title}([ 第${count2}話])([ 「${subTitle}」])'
    parent: Optional[str] = None
    error_dir: str = ''
    error_file: str = ''
    packet_size: int = TS_PACKET_SIZE
    duplicate_mode: DuplicateMode = DuplicateMode.DISAMBIGUATE
    check_service: bool = False
    check_time: bool = False
    check_drop: bool = False
    start_time_offset: int = 0
    duration_offset: int = 0
    info_start_ratio: float = INFO_START_RATIO
    info_window_ratio: float = INFO_WINDOW_RATIO
    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay: float = RETRY_DELAY_SECONDS
    guide_user: str = 'ts_renamer'
    dry_run: bool = False
    replace: Tuple[Tuple[str, str], ...] = ()
    services: Tuple[ServiceRule, ...] = ()
    keywords: Tuple[KeywordRule, ...] = ()

    def __post_init__(self):
        if self.packet_size not in PACKET_SIZES:
            raise ValueError(f"packet_size must be one of {PACKET_SIZES}, got {self.packet_size}")
        if not 0 <= self.info_start_ratio < 1:
            raise ValueError("info_start_ratio must be in [0, 1)")
        if not self.info_start_ratio < self.info_window_ratio <= 1:
            raise ValueError("info_window_ratio must be in (info_start_ratio, 1]")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")

    @property
    def has_error_output(self) -> bool:
        return bool(self.error_dir or self.error_file)

    def with_overrides(self, overrides: Dict) -> 'RunConfig':
        """Return a copy with rule overrides applied"""
        changes = {}
        for key, value in overrides.items():
            if key == 'check_duplication':
                changes['duplicate_mode'] = DuplicateMode.STRICT if value else DuplicateMode.DISAMBIGUATE
            else:
                changes[key] = value
        return replace(self, **changes) if changes else self

    def find_service(self, service_name: str) -> Optional[ServiceRule]:
        """First service rule whose half-width name occurs in the broadcast service name"""
        service_name = to_half(service_name)
        for rule in self.services:
            if to_half(rule.name) in service_name:
                return rule
        return None

    def match_keywords(self, event_name: str) -> List[KeywordRule]:
        return [rule for rule in self.keywords if rule.name and rule.name in event_name]

    @classmethod
    def from_dict(cls, data: Dict) -> 'RunConfig':
        data = dict(data or {})
        kwargs = {}

        for key in ('dir', 'file', 'error_dir', 'error_file', 'guide_user'):
            if data.get(key) is not None:
                kwargs[key] = str(data[key])
        if data.get('parent'):
            kwargs['parent'] = str(data['parent'])
        for key in ('check_service', 'check_time', 'check_drop', 'dry_run'):
            if key in data:
                kwargs[key] = _flag(key, data[key])
        for key in ('packet_size', 'start_time_offset', 'duration_offset', 'retry_attempts'):
            if data.get(key) is not None:
                kwargs[key] = int(data[key])
        for key in ('info_start_ratio', 'info_window_ratio', 'retry_delay'):
            if data.get(key) is not None:
                kwargs[key] = float(data[key])

        if data.get('duplicate_mode'):
            kwargs['duplicate_mode'] = DuplicateMode(data['duplicate_mode'])
        elif 'check_duplication' in data:
            strict = _flag('check_duplication', data['check_duplication'])
            kwargs['duplicate_mode'] = DuplicateMode.STRICT if strict else DuplicateMode.DISAMBIGUATE

        kwargs['replace'] = tuple(
            (str(entry['find']), str(entry.get('replace') or ''))
            for entry in data.get('replace') or []
        )
        kwargs['services'] = tuple(
            ServiceRule(
                name=str(entry['name']),
                channel_id=int(entry['channel_id']) if entry.get('channel_id') is not None else None,
                channel_name=entry.get('channel_name'),
                overrides=_overrides(entry),
            )
            for entry in data.get('services') or []
        )
        kwargs['keywords'] = tuple(
            KeywordRule(
                name=str(entry['name']),
                replace=entry.get('replace'),
                overrides=_overrides(entry),
            )
            for entry in data.get('keywords') or []
        )
        return cls(**kwargs)


def _flag(key: str, value) -> bool:
    """YAML booleans only; a quoted "false" is a string and is rejected"""
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _overrides(entry: Dict) -> Dict:
    overrides = {key: entry[key] for key in OVERRIDE_KEYS if key in entry}
    for key in FLAG_OVERRIDE_KEYS:
        if key in overrides:
            _flag(key, overrides[key])
    return overrides


def load_config(config_path: Optional[Path]) -> RunConfig:
    """Load configuration from YAML file; defaults when no file is given"""
    if config_path is None:
        return RunConfig()
    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    logger.debug(f"Loaded config from {config_path}")
    return RunConfig.from_dict(data)
