"""
Pack conversation turns into fixed-height cards.

Short neighbouring turns share one dialogue card. A turn that cannot fit a
card on its own is split at block boundaries first, then at sentence
boundaries, and as a last resort at the longest character prefix that
still fits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .blocks import segment_blocks, split_sentences
from .layout import (
    CONTENT_BUDGET,
    ITEM_PADDING,
    ROLE_HEADER_HEIGHT,
    TURN_GAP,
    LayoutUnavailableError,
    Measure,
)
from .models import (
    Card,
    ContentCard,
    CoverCard,
    DialogueCard,
    DialogueEntry,
    PageFragment,
    PaginationResult,
    mark_last,
)
from .parser import Turn


@dataclass
class PaginationConfig:
    budget: int = CONTENT_BUDGET
    role_header: int = ROLE_HEADER_HEIGHT
    item_padding: int = ITEM_PADDING
    turn_gap: int = TURN_GAP

    @property
    def chrome(self) -> int:
        """Height every turn adds on top of its measured text."""
        return self.role_header + self.item_padding


@dataclass(frozen=True)
class Granularity:
    name: str
    units: Callable[[str], List[str]]
    joiner: str


def _block_units(text: str) -> List[str]:
    return [block.text for block in segment_blocks(text)]


BLOCKS = Granularity("block", _block_units, "\n\n")
SENTENCES = Granularity("sentence", split_sentences, "")
SPLIT_CHAIN = (BLOCKS, SENTENCES)


class Paginator:
    def __init__(
        self,
        measure: Optional[Measure],
        config: Optional[PaginationConfig] = None,
        debug: bool = False,
    ) -> None:
        self.measure = measure
        self.config = config or PaginationConfig()
        self.debug = debug

    def height(self, text: str) -> int:
        """Height of ``text`` as the only turn on a card, chrome included."""
        return self.measure(text, self.config.chrome)

    def fits(self, text: str) -> bool:
        return self.height(text) <= self.config.budget

    def split_text(
        self,
        text: str,
        levels: Sequence[Granularity] = SPLIT_CHAIN,
    ) -> List[str]:
        """Split ``text`` into pages that each fit the budget.

        Units of the current granularity are concatenated greedily. A unit
        that does not fit even on an empty page is split at the next finer
        granularity, and its last piece keeps accumulating.
        """
        if not levels:
            return self._split_characters(text)

        level = levels[0]
        units = level.units(text)
        if len(units) == 1 and units[0] == text and not self.fits(text):
            return self.split_text(text, levels[1:])

        pages: List[str] = []
        current = ""
        for unit in units:
            candidate = f"{current}{level.joiner}{unit}" if current else unit
            if self.fits(candidate):
                current = candidate
                continue
            if current.strip():
                pages.append(current)
            current = ""
            if self.fits(unit):
                current = unit
                continue
            if self.debug:
                print(
                    f"[DEBUG] {level.name} of {len(unit)} chars exceeds budget, splitting finer"
                )
            pieces = self.split_text(unit, levels[1:])
            pages.extend(pieces[:-1])
            current = pieces[-1] if pieces else ""
        if current.strip():
            pages.append(current)
        return pages or [text]

    def _split_characters(self, text: str) -> List[str]:
        pages: List[str] = []
        start = 0
        while start < len(text):
            low, high = start + 1, len(text)
            best = start + 1
            while low <= high:
                mid = (low + high) // 2
                if self.fits(text[start:mid]):
                    best = mid
                    low = mid + 1
                else:
                    high = mid - 1
            pages.append(text[start:best])
            start = best
        if self.debug:
            print(f"[DEBUG] Character split produced {len(pages)} pages")
        return pages

    def _split_turn(self, turn: Turn) -> List[ContentCard]:
        pages = self.split_text(turn.text)
        total = len(pages)
        if self.debug:
            print(f"[DEBUG] {turn.role.value} turn split into {total} pages")
        return [
            ContentCard(
                PageFragment(role=turn.role, text=page, page_index=index, total_pages=total)
            )
            for index, page in enumerate(pages, start=1)
        ]

    def _flush(self, pending: List[Turn], cards: List[Card]) -> None:
        if not pending:
            return
        if len(pending) == 1:
            turn = pending[0]
            cards.append(ContentCard(PageFragment(role=turn.role, text=turn.text)))
            return
        cards.append(
            DialogueCard([DialogueEntry(role=turn.role, text=turn.text) for turn in pending])
        )
        if self.debug:
            print(f"[DEBUG] Merged {len(pending)} turns into a dialogue card")

    def _pack(self, turns: Sequence[Turn], cards: List[Card]) -> None:
        budget = self.config.budget
        pending: List[Turn] = []
        used = 0

        for turn in turns:
            single = self.height(turn.text)
            marginal = single + (self.config.turn_gap if pending else 0)
            if used + marginal <= budget:
                pending.append(turn)
                used += marginal
                continue

            self._flush(pending, cards)
            pending = []
            used = 0

            if single <= budget:
                pending.append(turn)
                used = single
                continue

            if self.debug:
                print(f"[DEBUG] Turn height {single} exceeds budget {budget}")
            cards.extend(self._split_turn(turn))

        self._flush(pending, cards)

    def _degraded(self, turns: Sequence[Turn], cover: bool) -> PaginationResult:
        cards: List[Card] = [CoverCard()] if cover else []
        cards.extend(ContentCard(PageFragment(role=turn.role, text=turn.text)) for turn in turns)
        mark_last(cards)
        return PaginationResult(cards=cards, degraded=True)

    def paginate(self, turns: Sequence[Turn], cover: bool = False) -> PaginationResult:
        if self.measure is None:
            if self.debug:
                print("[DEBUG] No layout oracle, one card per turn")
            return self._degraded(turns, cover)

        cards: List[Card] = [CoverCard()] if cover else []
        try:
            self._pack(turns, cards)
        except LayoutUnavailableError as exc:
            if self.debug:
                print(f"[DEBUG] Layout unavailable ({exc}), one card per turn")
            return self._degraded(turns, cover)

        mark_last(cards)
        if self.debug:
            print(f"[DEBUG] Paginated {len(turns)} turns into {len(cards)} cards")
        return PaginationResult(cards=cards)


def paginate(
    turns: Sequence[Turn],
    measure: Optional[Measure],
    config: Optional[PaginationConfig] = None,
    cover: bool = False,
    debug: bool = False,
) -> PaginationResult:
    return Paginator(measure, config, debug=debug).paginate(turns, cover=cover)
