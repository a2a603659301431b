from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import List, Optional


FENCE_PATTERN = re.compile(r"^\s*```")
HEADING_PATTERN = re.compile(r"^#{1,6}\s")
LIST_ITEM_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+\.)\s")
QUOTE_PATTERN = re.compile(r"^\s*>")
SENTENCE_PATTERN = re.compile(r"[^.!?。！？\n]*(?:[.!?。！？\n]+|$)")


class BlockKind(str, enum.Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    CODE = "code"
    LIST = "list"
    QUOTE = "quote"


@dataclass(frozen=True)
class Block:
    kind: BlockKind
    text: str


class _BlockBuilder:
    def __init__(self) -> None:
        self.blocks: List[Block] = []
        self.lines: List[str] = []
        self.kind: BlockKind = BlockKind.PARAGRAPH

    def close(self) -> None:
        if self.lines:
            text = "\n".join(self.lines)
            if text.strip():
                self.blocks.append(Block(kind=self.kind, text=text))
        self.lines = []
        self.kind = BlockKind.PARAGRAPH

    def open(self, kind: BlockKind, line: str) -> None:
        self.close()
        self.kind = kind
        self.lines.append(line)

    def append(self, line: str) -> None:
        self.lines.append(line)


def segment_blocks(text: str) -> List[Block]:
    """Split a turn into blocks that are never broken across pages.

    Code fences are kept whole. Headings stand alone, contiguous list items
    and quote lines each stay in one block, and blank lines end paragraphs.
    """
    builder = _BlockBuilder()
    in_fence = False
    run: Optional[BlockKind] = None

    for line in text.replace("\r\n", "\n").split("\n"):
        if FENCE_PATTERN.match(line):
            if in_fence:
                builder.append(line)
                builder.close()
                in_fence = False
            else:
                builder.open(BlockKind.CODE, line)
                in_fence = True
            run = None
            continue

        if in_fence:
            builder.append(line)
            continue

        if not line.strip():
            builder.close()
            run = None
            continue

        if HEADING_PATTERN.match(line):
            builder.open(BlockKind.HEADING, line)
            builder.close()
            run = None
            continue

        if LIST_ITEM_PATTERN.match(line):
            if run is not BlockKind.LIST:
                builder.open(BlockKind.LIST, line)
                run = BlockKind.LIST
            else:
                builder.append(line)
            continue

        if QUOTE_PATTERN.match(line):
            if run is not BlockKind.QUOTE:
                builder.open(BlockKind.QUOTE, line)
                run = BlockKind.QUOTE
            else:
                builder.append(line)
            continue

        # Lazy continuation: plain lines join whatever block is open.
        builder.append(line)

    builder.close()
    return builder.blocks


def split_sentences(text: str) -> List[str]:
    """Split after sentence punctuation or a newline.

    Terminators stay attached to their sentence, so ``"".join`` of the
    result gives back ``text``.
    """
    return [piece for piece in SENTENCE_PATTERN.findall(text) if piece]
