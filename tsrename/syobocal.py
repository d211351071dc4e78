#!/usr/bin/env python3
"""
Syoboi Calendar (cal.syoboi.jp) guide client

Two endpoints are used:
  rss2.php?alt=json          programs airing inside a time window
  json.php?Req=TitleFull     full title metadata for a series id (TID)

Request failures propagate as requests exceptions; callers decide whether
to retry (see tsrename.retry).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

JST = timezone(timedelta(hours=9))


@dataclass(frozen=True)
class CandidateProgram:
    """One airing returned by the guide for a time window"""
    tid: int
    title: str
    sub_title: Optional[str]
    count: Optional[int]
    start_time: datetime  # naive JST
    end_time: datetime    # naive JST
    channel_id: Optional[int]
    channel_name: str


@dataclass(frozen=True)
class TitleMetadata:
    """Series-level metadata for a TID"""
    title: str
    short_title: Optional[str] = None
    title_yomi: Optional[str] = None
    title_english: Optional[str] = None
    first_year: Optional[int] = None
    first_month: Optional[int] = None
    first_end_year: Optional[int] = None
    first_end_month: Optional[int] = None


def _to_int(value) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_text(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _from_epoch(value) -> datetime:
    return datetime.fromtimestamp(int(value), JST).replace(tzinfo=None)


def _window_param(when: datetime) -> str:
    return when.strftime('%Y%m%d%H%M')


class SyobocalClient:
    """Interface to the Syoboi Calendar guide service"""

    def __init__(self, user: str = 'ts_renamer', base_url: str = 'https://cal.syoboi.jp',
                 timeout: float = 30):
        self.user = user
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _get_json(self, endpoint: str, params: Dict) -> Dict:
        response = requests.get(
            f"{self.base_url}/{endpoint}",
            params=params,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def find_programs(self, start: datetime, end: datetime) -> List[CandidateProgram]:
        """Programs whose airing starts inside [start, end] (naive JST)"""
        data = self._get_json('rss2.php', {
            'start': _window_param(start),
            'end': _window_param(end),
            'usr': self.user,
            'alt': 'json',
        })

        programs = []
        for item in data.get('items') or []:
            try:
                programs.append(CandidateProgram(
                    tid=int(item['TID']),
                    title=item.get('Title') or '',
                    sub_title=_to_text(item.get('SubTitle')),
                    count=_to_int(item.get('Count')),
                    start_time=_from_epoch(item['StTime']),
                    end_time=_from_epoch(item['EdTime']),
                    channel_id=_to_int(item.get('ChID')),
                    channel_name=item.get('ChName') or '',
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed guide item {item!r}: {e}")

        logger.debug(f"Guide returned {len(programs)} programs for {start} - {end}")
        return programs

    def get_full_title(self, tid: int) -> TitleMetadata:
        """Full title record for a series id; KeyError if the guide has none"""
        data = self._get_json('json.php', {'Req': 'TitleFull', 'TID': tid})
        title = (data.get('Titles') or {})[str(tid)]

        return TitleMetadata(
            title=title.get('Title') or '',
            short_title=_to_text(title.get('ShortTitle')),
            title_yomi=_to_text(title.get('TitleYomi')),
            title_english=_to_text(title.get('TitleEN')),
            first_year=_to_int(title.get('FirstYear')),
            first_month=_to_int(title.get('FirstMonth')),
            first_end_year=_to_int(title.get('FirstEndYear')),
            first_end_month=_to_int(title.get('FirstEndMonth')),
        )
