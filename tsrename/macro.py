#!/usr/bin/env python3
"""
Template macros for output paths

Two forms coexist in a template:

    ${name}        replaced by the macro value; unknown names stay literal
    ([ ... ])      optional block; collapses to "" when any known macro
                   inside it resolves to an empty string

Example:
    "${title}([ #${count2}])"  with count2 = ""    -> "Foo"
                               with count2 = "07"  -> "Foo #07"

Templates are parsed into a small tree first (literal text, macro references,
blocks) and then rendered, so a macro value is never re-scanned for macros.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from tsrename.constants import SEASONS
from tsrename.text import escape_path

MACRO_OPEN = '${'
MACRO_CLOSE = '}'
BLOCK_OPEN = '(['
BLOCK_CLOSE = '])'


@dataclass(frozen=True)
class MacroRef:
    name: str


@dataclass(frozen=True)
class Block:
    children: Tuple['Node', ...]


Node = Union[str, MacroRef, Block]


def parse_template(template: str) -> List[Node]:
    """Parse a template into literal strings, MacroRefs and Blocks"""
    nodes, _ = _parse_nodes(template, 0, in_block=False)
    return nodes


def _parse_nodes(template: str, pos: int, in_block: bool) -> Tuple[List[Node], Optional[int]]:
    nodes: List[Node] = []
    literal: List[str] = []

    def flush():
        if literal:
            nodes.append(''.join(literal))
            literal.clear()

    while pos < len(template):
        if template.startswith(BLOCK_OPEN, pos):
            children, end = _parse_nodes(template, pos + len(BLOCK_OPEN), in_block=True)
            if end is None:
                # Unterminated block is plain text
                literal.append(BLOCK_OPEN)
                pos += len(BLOCK_OPEN)
                continue
            flush()
            nodes.append(Block(tuple(children)))
            pos = end
            continue

        if in_block and template.startswith(BLOCK_CLOSE, pos):
            flush()
            return nodes, pos + len(BLOCK_CLOSE)

        if template.startswith(MACRO_OPEN, pos):
            close = template.find(MACRO_CLOSE, pos + len(MACRO_OPEN))
            if in_block:
                # A macro never spans the close of its enclosing block
                block_close = template.find(BLOCK_CLOSE, pos + len(MACRO_OPEN))
                if block_close != -1 and block_close < close:
                    close = -1
            if close != -1:
                flush()
                nodes.append(MacroRef(template[pos + len(MACRO_OPEN):close]))
                pos = close + len(MACRO_CLOSE)
                continue

        literal.append(template[pos])
        pos += 1

    flush()
    if in_block:
        return nodes, None
    return nodes, pos


class MacroResolver:
    """Resolve templates against a read-only macro set"""

    def __init__(self, macros: Dict[str, str]):
        self.macros = macros

    def resolve(self, template: str) -> str:
        text, _ = self._render(parse_template(template))
        return text

    def _render(self, nodes) -> Tuple[str, bool]:
        """Return (text, has_empty_macro) for a node sequence"""
        parts = []
        has_empty = False

        for node in nodes:
            if isinstance(node, str):
                parts.append(node)
            elif isinstance(node, MacroRef):
                if node.name not in self.macros:
                    parts.append(f"{MACRO_OPEN}{node.name}{MACRO_CLOSE}")
                    continue
                value = self.macros[node.name]
                if value == '':
                    has_empty = True
                parts.append(value)
            else:
                text, block_empty = self._render(node.children)
                parts.append('' if block_empty else text)

        return ''.join(parts), has_empty


def resolve(template: str, macros: Dict[str, str]) -> str:
    return MacroResolver(macros).resolve(template)


def _text(value: Optional[str]) -> str:
    return escape_path(value) if value else ''


def _number(value: Optional[int], width: int = 1) -> str:
    return '' if value is None else str(value).zfill(width)


def _first_aired(prefix: str, year: Optional[int], month: Optional[int]) -> Dict[str, str]:
    quarter = None if month is None else (month - 1) // 3
    return {
        f'{prefix}YYYY': _number(year),
        f'{prefix}YY': '' if year is None else str(year)[-2:],
        f'{prefix}M': _number(month),
        f'{prefix}MM': _number(month, 2),
        f'{prefix}Quarter': '' if quarter is None else str(quarter + 1),
        f'{prefix}Season': '' if quarter is None else SEASONS[quarter],
    }


def _date_parts(prefix: str, when: datetime) -> Dict[str, str]:
    return {
        f'{prefix}YYYY': f'{when.year:04d}',
        f'{prefix}YY': f'{when.year:04d}'[-2:],
        f'{prefix}M': str(when.month),
        f'{prefix}MM': f'{when.month:02d}',
        f'{prefix}D': str(when.day),
        f'{prefix}DD': f'{when.day:02d}',
        f'{prefix}h': str(when.hour),
        f'{prefix}hh': f'{when.hour:02d}',
        f'{prefix}m': str(when.minute),
        f'{prefix}mm': f'{when.minute:02d}',
        f'{prefix}s': str(when.second),
        f'{prefix}ss': f'{when.second:02d}',
    }


def build_macros(program, original: str, user_channel_name: Optional[str] = None) -> Dict[str, str]:
    """
    Build the success-path macro set from a SelectedProgram

    Text values are path-escaped here, once; template text never is.

    Args:
        program: SelectedProgram chosen by the matcher
        original: Input file name without extension
        user_channel_name: Channel name from the configured services table

    Returns:
        Dict of macro name -> string value
    """
    macros = {
        'original': original,
        'title': _text(program.title),
        'shortTitle': _text(program.short_title) or _text(program.title),
        'subTitle': _text(program.sub_title),
        'titleYomi': _text(program.title_yomi),
        'titleEnglish': _text(program.title_english),
        'count': _number(program.count),
        'count2': _number(program.count, 2),
        'count3': _number(program.count, 3),
        'count4': _number(program.count, 4),
        'channelName': _text(program.channel_name),
        'userChannelName': _text(user_channel_name),
    }
    macros.update(_first_aired('firstStart', program.first_year, program.first_month))
    macros.update(_first_aired('firstEnd', program.first_end_year, program.first_end_month))
    macros.update(_date_parts('', program.start_time))
    macros.update(_date_parts('_', program.end_time))
    return macros


def build_error_macros(original: str, error: str) -> Dict[str, str]:
    """Reduced macro set used when the pipeline takes the error path"""
    return {
        'original': original,
        'error': error,
    }
