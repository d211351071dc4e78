#!/usr/bin/env python3
"""
Program matcher: map a broadcast ProgramIdentity to one guide entry

1. Query the guide for +/- 1 hour around the observed start time
2. Keep entries whose compact title contains the search fragment
3. Keep entries on the resolved channel, when one is known
4. Nothing left: query [start, start + duration] once more (channel filter only)
5. Pick the entry whose start time is nearest the observed one
   (first encountered wins a tie)
6. Fetch the series' full title record and merge it in

Every guide request goes through the RetryPolicy (one retry after a fixed
delay by default). A request that still fails becomes GuideUnavailable.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import requests

from tsrename.constants import GUIDE_SEARCH_MARGIN_SECONDS
from tsrename.correlator import ProgramIdentity
from tsrename.errors import ProgramNotFound, GuideUnavailable
from tsrename.retry import RetryPolicy
from tsrename.syobocal import CandidateProgram, TitleMetadata
from tsrename.text import search_fragment, compact_title

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectedProgram:
    """The authoritative program record used for macro substitution"""
    tid: int
    title: str
    short_title: Optional[str]
    title_yomi: Optional[str]
    title_english: Optional[str]
    first_year: Optional[int]
    first_month: Optional[int]
    first_end_year: Optional[int]
    first_end_month: Optional[int]
    sub_title: Optional[str]
    count: Optional[int]
    start_time: datetime
    end_time: datetime
    channel_id: Optional[int]
    channel_name: str

    @classmethod
    def merge(cls, candidate: CandidateProgram, title: TitleMetadata) -> 'SelectedProgram':
        return cls(
            tid=candidate.tid,
            title=title.title or candidate.title,
            short_title=title.short_title,
            title_yomi=title.title_yomi,
            title_english=title.title_english,
            first_year=title.first_year,
            first_month=title.first_month,
            first_end_year=title.first_end_year,
            first_end_month=title.first_end_month,
            sub_title=candidate.sub_title,
            count=candidate.count,
            start_time=candidate.start_time,
            end_time=candidate.end_time,
            channel_id=candidate.channel_id,
            channel_name=candidate.channel_name,
        )


def select_nearest(candidates: Sequence[CandidateProgram], start_time: datetime) -> CandidateProgram:
    """Candidate with the smallest |start difference|; earliest in order on ties"""
    best = candidates[0]
    best_diff = abs(best.start_time - start_time)
    for candidate in candidates[1:]:
        diff = abs(candidate.start_time - start_time)
        if diff < best_diff:
            best, best_diff = candidate, diff
    return best


def filter_by_channel(candidates: List[CandidateProgram], channel_id: Optional[int]) -> List[CandidateProgram]:
    if channel_id is None:
        return candidates
    return [c for c in candidates if c.channel_id == channel_id]


class ProgramMatcher:
    """
    Select the guide program matching a recording

    Args:
        guide: Object with find_programs(start, end) and get_full_title(tid)
        retry: Retry policy wrapped around each guide request
        margin_seconds: Half-width of the primary search window
    """

    def __init__(self, guide, retry: Optional[RetryPolicy] = None,
                 margin_seconds: int = GUIDE_SEARCH_MARGIN_SECONDS):
        self.guide = guide
        self.retry = retry or RetryPolicy()
        self.margin = timedelta(seconds=margin_seconds)

    def _request(self, func, *args):
        try:
            return self.retry.call(func, *args)
        except requests.exceptions.RequestException as e:
            raise GuideUnavailable(f"Guide request failed: {e}") from e

    def _find(self, start: datetime, end: datetime) -> List[CandidateProgram]:
        return self._request(self.guide.find_programs, start, end)

    def match(self, identity: ProgramIdentity, event_name: str,
              channel_id: Optional[int] = None) -> SelectedProgram:
        """
        Args:
            identity: ProgramIdentity from the metadata correlator
            event_name: Normalized event name (see text.normalize_event_name)
            channel_id: Guide channel id from the services table, if resolved

        Raises:
            ProgramNotFound: no candidate survives filtering in either window
            GuideUnavailable: the guide kept failing after the retry
        """
        fragment = search_fragment(event_name)
        logger.info(" - Search")
        logger.info(f"   - title    : {fragment}")
        if channel_id is not None:
            logger.info(f"   - channelId: {channel_id}")

        start = identity.start_time
        programs = self._find(start - self.margin, start + self.margin)
        candidates = [p for p in programs if fragment in compact_title(p.title)]
        candidates = filter_by_channel(candidates, channel_id)

        if not candidates and identity.duration_seconds:
            logger.info(" - No title match; searching the event's own time span")
            programs = self._find(start, start + timedelta(seconds=identity.duration_seconds))
            candidates = filter_by_channel(programs, channel_id)

        if not candidates:
            raise ProgramNotFound(f"Can't find program for '{fragment}' at {start}")

        candidate = select_nearest(candidates, start)
        try:
            title = self._request(self.guide.get_full_title, candidate.tid)
        except KeyError as e:
            raise ProgramNotFound(f"Guide has no title record for TID {candidate.tid}") from e

        program = SelectedProgram.merge(candidate, title)
        logger.info(" - Program")
        logger.info(f"   - title      : {program.title}")
        logger.info(f"   - subTitle   : {program.sub_title}")
        logger.info(f"   - count      : {program.count}")
        logger.info(f"   - channelName: {program.channel_name}")
        return program
