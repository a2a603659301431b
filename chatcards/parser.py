"""
Recover the ordered list of user / assistant turns from a markdown
conversation transcript.

User turns are written as a one-column table::

    | User Prompt: |
    |-------------|
    | question text |

Everything between one such table and the next belongs to the assistant.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple


USER_HEADER_PATTERN = re.compile(r"^\|\s*User\s*Prompt\s*:\s*\|$", re.IGNORECASE)
SEPARATOR_PATTERN = re.compile(r"^\|[-\s]+\|$")
PREVIEW_LENGTH = 80
COVER_TITLE_LENGTH = 50
MARKUP_CHARS_PATTERN = re.compile(r"[#*`]")
COVER_SENTENCE_SPLIT = re.compile(r"[。！？\n]")


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str


class LineKind(enum.Enum):
    HEADER = "header"
    SEPARATOR = "separator"
    CELL = "cell"
    OTHER = "other"


class ParserState(enum.Enum):
    IDLE = "idle"
    USER_TABLE = "user_table"
    ASSISTANT = "assistant"


def classify_line(line: str, in_table: bool) -> LineKind:
    stripped = line.strip()
    if USER_HEADER_PATTERN.match(stripped):
        return LineKind.HEADER
    if in_table and SEPARATOR_PATTERN.match(stripped):
        return LineKind.SEPARATOR
    if (
        in_table
        and len(stripped) >= 2
        and stripped.startswith("|")
        and stripped.endswith("|")
    ):
        return LineKind.CELL
    return LineKind.OTHER


def _cell_content(line: str) -> str:
    return line.strip()[1:-1].strip()


def _tokenize(lines: Iterable[str]) -> Iterator[Tuple[LineKind, str]]:
    """Yield typed inputs for the automaton.

    Separator and cell rows only exist inside a user table, so the
    tokenizer tracks whether the previous input left a table open.
    """
    in_table = False
    for line in lines:
        kind = classify_line(line, in_table)
        if kind is LineKind.HEADER:
            in_table = True
        elif kind is LineKind.OTHER:
            in_table = False
        yield kind, line


class ConversationParser:
    """Two-state automaton over typed line inputs."""

    def __init__(self, keep_preamble: bool = False, debug: bool = False) -> None:
        self.keep_preamble = keep_preamble
        self.debug = debug
        self.state = ParserState.IDLE
        self.turns: List[Turn] = []
        self._pending: List[str] = []
        self._preamble: List[str] = []

    def _emit(self, role: Role) -> None:
        text = "\n".join(self._pending).strip()
        self._pending = []
        if text:
            self.turns.append(Turn(role=role, text=text))
        elif self.debug:
            print(f"[DEBUG] Dropping empty {role.value} turn")

    def _flush(self) -> None:
        if self.state is ParserState.USER_TABLE:
            self._emit(Role.USER)
        elif self.state is ParserState.ASSISTANT:
            self._emit(Role.ASSISTANT)
        elif self._preamble:
            preamble = "\n".join(self._preamble).strip()
            self._preamble = []
            if not preamble:
                return
            if self.keep_preamble:
                self.turns.append(Turn(role=Role.ASSISTANT, text=preamble))
            elif self.debug:
                print(
                    f"[DEBUG] Discarding {len(preamble)} characters before the first user prompt"
                )

    def feed(self, kind: LineKind, line: str) -> None:
        if kind is LineKind.HEADER:
            self._flush()
            self.state = ParserState.USER_TABLE
            return

        if self.state is ParserState.USER_TABLE:
            if kind is LineKind.SEPARATOR:
                return
            if kind is LineKind.CELL:
                content = _cell_content(line)
                if content:
                    self._pending.append(content)
                return
            # First line outside the table starts the assistant reply.
            self._emit(Role.USER)
            self.state = ParserState.ASSISTANT
            self._pending.append(line)
            return

        if self.state is ParserState.ASSISTANT:
            self._pending.append(line)
            return

        self._preamble.append(line)

    def finish(self) -> List[Turn]:
        self._flush()
        self.state = ParserState.IDLE
        return self.turns


def parse_conversation(
    markdown: str,
    keep_preamble: bool = False,
    debug: bool = False,
) -> List[Turn]:
    """Split a transcript into ordered turns.

    A document without any ``| User Prompt: |`` header yields no turns.
    Text ahead of the first header is dropped unless ``keep_preamble`` is
    set, in which case it becomes a leading assistant turn.
    """
    parser = ConversationParser(keep_preamble=keep_preamble, debug=debug)
    for kind, line in _tokenize(markdown.replace("\r\n", "\n").split("\n")):
        parser.feed(kind, line)
    turns = parser.finish()
    if debug:
        users = sum(1 for turn in turns if turn.role is Role.USER)
        print(
            f"[DEBUG] Parsed {len(turns)} turns ({users} user, {len(turns) - users} assistant)"
        )
    return turns


def preview_text(turn: Turn, length: int = PREVIEW_LENGTH) -> str:
    cleaned = MARKUP_CHARS_PATTERN.sub("", turn.text[:length])
    cleaned = " ".join(cleaned.split())
    if len(turn.text) > length:
        cleaned += "..."
    return cleaned


def suggest_cover_title(turns: Iterable[Turn]) -> Optional[str]:
    """First sentence of the first assistant reply, trimmed for a cover."""
    for turn in turns:
        if turn.role is not Role.ASSISTANT:
            continue
        first = COVER_SENTENCE_SPLIT.split(turn.text, maxsplit=1)[0]
        first = MARKUP_CHARS_PATTERN.sub("", first).strip()[:COVER_TITLE_LENGTH]
        return first or None
    return None
