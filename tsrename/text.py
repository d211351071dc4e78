#!/usr/bin/env python3
"""
Shared text normalization for broadcast titles and filesystem paths

Event names arrive from the broadcast with full-width alphanumerics, bracketed
annotations ([新], 【字】, <再>, (終)) and quotation brackets. The guide service
uses half-width text. Both sides go through to_half() so that searches are
symmetric.

Path escaping is the inverse direction: characters a filesystem rejects are
shifted to their full-width forms so the value still reads the same.
"""

import re
from typing import Iterable, Tuple

from tsrename.constants import (
    STRIP_BRACKETS, UNWRAP_BRACKETS, ILLEGAL_PATH_CHARS, SEARCH_FRAGMENT_LENGTH
)

FULL_WIDTH_OFFSET = 0xFEE0
IDEOGRAPHIC_SPACE = '　'

_FULL_WIDTH_RE = re.compile('[！-～]')
_HALF_WIDTH_RE = re.compile('[!-~]')
_ILLEGAL_RE = re.compile('[' + re.escape(ILLEGAL_PATH_CHARS) + ']')

_STRIP_RES = [
    re.compile(re.escape(open_) + '.+?' + re.escape(close))
    for open_, close in STRIP_BRACKETS
]
_UNWRAP_RES = [
    re.compile(re.escape(open_) + '(.+?)' + re.escape(close))
    for open_, close in UNWRAP_BRACKETS
]


def to_half(text: str) -> str:
    """Full-width ASCII forms and the ideographic space to half-width"""
    text = _FULL_WIDTH_RE.sub(lambda m: chr(ord(m.group(0)) - FULL_WIDTH_OFFSET), text)
    return text.replace(IDEOGRAPHIC_SPACE, ' ')


def to_full(text: str) -> str:
    """Printable ASCII and the space to full-width"""
    text = _HALF_WIDTH_RE.sub(lambda m: chr(ord(m.group(0)) + FULL_WIDTH_OFFSET), text)
    return text.replace(' ', IDEOGRAPHIC_SPACE)


def escape_path(value: str) -> str:
    """
    Replace characters illegal in file names with their full-width forms

    Idempotent: the replacements are outside the illegal set, so escaping an
    already escaped value changes nothing.

    Examples:
        >>> escape_path('Re:Zero')
        'Re：Zero'
        >>> escape_path('Fate/stay night')
        'Fate／stay night'
    """
    return _ILLEGAL_RE.sub(lambda m: to_full(m.group(0)), value)


def strip_annotations(text: str) -> str:
    """Drop bracketed annotations and unwrap quotation brackets"""
    for pattern in _STRIP_RES:
        text = pattern.sub('', text)
    for pattern in _UNWRAP_RES:
        text = pattern.sub(r' \1 ', text)
    return text


def normalize_event_name(name: str, replacements: Iterable[Tuple[str, str]] = ()) -> str:
    """
    Normalize a broadcast event name before it is used as a search key

    Normalization steps:
    1. Full-width forms to half-width (including the ideographic space)
    2. Strip [...], 【...】, <...>, (...) annotations
    3. Unwrap 「...」 and 『...』 to space-padded text
    4. Apply literal find -> replace pairs in order
    5. Trim

    Examples:
        >>> normalize_event_name('[新]探偵物語　#3')
        '探偵物語 #3'
    """
    name = strip_annotations(to_half(name))
    for find, replace in replacements:
        if find:
            name = name.replace(find, replace)
    return name.strip()


def search_fragment(name: str) -> str:
    """
    Leading part of a normalized event name used to filter guide titles

    Everything up to the first space, capped at SEARCH_FRAGMENT_LENGTH
    characters; the full cap when no space occurs before it.
    """
    space = name.find(' ')
    end = space if 0 < space < SEARCH_FRAGMENT_LENGTH else SEARCH_FRAGMENT_LENGTH
    return name[:end]


def compact_title(title: str) -> str:
    """Half-width, space-free form of a guide title for substring matching"""
    return to_half(title).replace(' ', '')
