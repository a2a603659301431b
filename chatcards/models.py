from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from .parser import Role


@dataclass(frozen=True)
class PageFragment:
    role: Role
    text: str
    page_index: int = 1
    total_pages: int = 1

    @property
    def is_first_of_turn(self) -> bool:
        return self.page_index == 1


@dataclass
class CoverCard:
    kind: str = field(default="cover", init=False)
    role: Optional[Role] = field(default=None, init=False)
    is_last: bool = field(default=False, init=False)


@dataclass
class ContentCard:
    fragment: PageFragment
    is_last: bool = False
    kind: str = field(default="content", init=False)

    @property
    def role(self) -> Role:
        return self.fragment.role

    @property
    def text(self) -> str:
        return self.fragment.text

    @property
    def page_index(self) -> int:
        return self.fragment.page_index

    @property
    def total_pages(self) -> int:
        return self.fragment.total_pages

    @property
    def is_continuation(self) -> bool:
        return not self.fragment.is_first_of_turn


@dataclass(frozen=True)
class DialogueEntry:
    role: Role
    text: str


@dataclass
class DialogueCard:
    entries: List[DialogueEntry]
    is_last: bool = False
    kind: str = field(default="dialogue", init=False)


Card = Union[CoverCard, ContentCard, DialogueCard]


@dataclass
class PaginationResult:
    """Cards in display order.

    ``degraded`` is set when text could not be measured and every turn was
    given exactly one card without splitting.
    """

    cards: List[Card] = field(default_factory=list)
    degraded: bool = False

    def __iter__(self) -> Iterator[Card]:
        return iter(self.cards)

    def __len__(self) -> int:
        return len(self.cards)

    def __getitem__(self, index: int) -> Card:
        return self.cards[index]


def mark_last(cards: List[Card]) -> None:
    """Flag the last non-cover card and clear the flag everywhere else."""
    for card in cards:
        if not isinstance(card, CoverCard):
            card.is_last = False
    for card in reversed(cards):
        if not isinstance(card, CoverCard):
            card.is_last = True
            break
