#!/usr/bin/env python3
"""
Bounded retry with a fixed delay for guide-service requests
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type

import requests

from tsrename.constants import RETRY_ATTEMPTS, RETRY_DELAY_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Call a function up to `attempts` times, sleeping `delay` seconds between tries

    Only `retry_on` exceptions are retried; the last one propagates once the
    attempts are spent. `sleep` is injectable so tests never wait.
    """
    attempts: int = RETRY_ATTEMPTS
    delay: float = RETRY_DELAY_SECONDS
    sleep: Callable[[float], None] = time.sleep
    retry_on: Tuple[Type[BaseException], ...] = (requests.exceptions.RequestException,)

    def call(self, func, *args, **kwargs):
        for attempt in range(1, self.attempts + 1):
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.attempts:
                    raise
                logger.warning(f" - Request failed ({e}); retry after {self.delay:g} seconds...")
                self.sleep(self.delay)
