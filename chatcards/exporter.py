from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from PIL import Image

from .models import Card, ContentCard, CoverCard
from .parser import Role


EXPORT_DELAY = 0.1
ROLE_TAGS: Dict[Role, str] = {Role.USER: "user", Role.ASSISTANT: "gemini"}


@dataclass
class ExportFailure:
    index: int
    filename: str
    error: str


@dataclass
class ExportReport:
    total: int
    output_dir: Optional[Path] = None
    written: List[Path] = field(default_factory=list)
    failures: List[ExportFailure] = field(default_factory=list)

    @property
    def exported(self) -> int:
        return len(self.written)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return f"exported {self.exported} of {self.total}"


def page_letters(page_index: int) -> str:
    """1 -> a, 26 -> z, 27 -> aa."""
    letters = ""
    value = page_index
    while value > 0:
        value, remainder = divmod(value - 1, 26)
        letters = chr(ord("a") + remainder) + letters
    return letters


def card_filename(
    volume: str,
    index: int,
    card: Card,
    role_tags: Optional[Dict[Role, str]] = None,
) -> str:
    """``Vol{N}_{index}_{suffix}.png`` where index 00 is the cover slot."""
    tags = role_tags or ROLE_TAGS
    if isinstance(card, CoverCard):
        suffix = "cover"
    elif isinstance(card, ContentCard):
        suffix = tags.get(card.role, card.role.value)
        if card.total_pages > 1:
            suffix += page_letters(card.page_index)
    else:
        suffix = "dialogue"
    return f"Vol{volume}_{index:02}_{suffix}.png"


def ensure_output_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def build_target_directory(base_dir: Path, stem: str) -> Path:
    ensure_output_dir(base_dir)
    stem = stem or "cards"
    candidate = base_dir / stem
    if not candidate.exists():
        return candidate

    suffix = 1
    while True:
        candidate = base_dir / f"{stem}_{suffix}"
        if not candidate.exists():
            return candidate
        suffix += 1


def export_cards(
    cards: Sequence[Card],
    render: Callable[[Card], Image.Image],
    output_dir: Path,
    volume: str = "1",
    role_tags: Optional[Dict[Role, str]] = None,
    delay: float = EXPORT_DELAY,
    debug: bool = False,
    only: Optional[int] = None,
) -> ExportReport:
    """Render and save cards one at a time, in order.

    A card that fails to render or save is recorded in the report and the
    remaining cards are still exported. Files already written stay on disk.
    With ``only`` set, just that card is exported, still named by its
    position in the full list.
    """
    if only is not None:
        if not 0 <= only < len(cards):
            raise ValueError(f"Card index {only} out of range ({len(cards)} cards)")
        chosen = [(only, cards[only])]
    else:
        chosen = list(enumerate(cards))
    ensure_output_dir(output_dir)
    report = ExportReport(total=len(chosen), output_dir=output_dir)
    for position, (index, card) in enumerate(chosen):
        filename = card_filename(volume, index, card, role_tags)
        target = output_dir / filename
        try:
            image = render(card)
            image.save(target, format="PNG")
        except Exception as exc:  # noqa: BLE001
            report.failures.append(ExportFailure(index=index, filename=filename, error=str(exc)))
            if debug:
                print(f"[DEBUG] Failed to export {filename}: {exc}")
        else:
            report.written.append(target)
            if debug:
                print(f"[DEBUG] Saved {target}")
        if delay and position < len(chosen) - 1:
            time.sleep(delay)
    return report
