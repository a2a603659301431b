from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .exporter import EXPORT_DELAY, ROLE_TAGS, ExportReport, build_target_directory, export_cards
from .layout import LayoutOracle, LayoutUnavailableError, Measure, Typography
from .models import Card, PaginationResult
from .pagination import PaginationConfig, Paginator
from .parser import Role, Turn, parse_conversation, suggest_cover_title
from .render import CardRenderer, CardStyle, CoverOptions


class CardSession:
    """Everything one document needs from parsing to export.

    The caller owns the session; nothing is kept at module level. Cards are
    rebuilt whenever the selection or the cover toggle changes.
    """

    def __init__(
        self,
        oracle: Optional[LayoutOracle] = None,
        config: Optional[PaginationConfig] = None,
        style: Optional[CardStyle] = None,
        cover_options: Optional[CoverOptions] = None,
        measure: Optional[Measure] = None,
        keep_preamble: bool = False,
        debug: bool = False,
    ) -> None:
        self.oracle = oracle
        self.measure = measure if measure is not None else oracle
        self.config = config or PaginationConfig()
        self.style = style or CardStyle()
        self.cover_options = cover_options or CoverOptions()
        self.keep_preamble = keep_preamble
        self.debug = debug
        self.name = "cards"
        self.turns: List[Turn] = []
        self.selected: List[int] = []
        self.cover = False
        self.result = PaginationResult()

    @classmethod
    def with_fonts(
        cls,
        font_path: Optional[Path] = None,
        font_size: Optional[int] = None,
        font_index: int = 0,
        scale: Optional[float] = None,
        debug: bool = False,
        **kwargs,
    ) -> "CardSession":
        """Build a session with a Pillow layout oracle.

        Fonts are resolved once here. When none can be loaded the session
        draws with Pillow's bundled font and paginates in degraded mode.
        """
        options = {"font_index": font_index, "debug": debug}
        if font_size is not None:
            options["font_size"] = font_size
        if scale is not None:
            options["scale"] = scale
        try:
            typography = Typography.load(font_path, **options)
        except LayoutUnavailableError as exc:
            if debug:
                print(f"[DEBUG] {exc}")
            return cls._degraded_session(font_size, scale, debug, **kwargs)
        oracle = LayoutOracle(typography, debug=debug)
        return cls(oracle=oracle, debug=debug, **kwargs)

    @classmethod
    def _degraded_session(
        cls,
        font_size: Optional[int],
        scale: Optional[float],
        debug: bool,
        **kwargs,
    ) -> "CardSession":
        """Draw with Pillow's bundled font but never measure with it.

        Its metrics do not match the fonts the layout budget was tuned for,
        so pagination stays one card per turn.
        """
        options = {}
        if font_size is not None:
            options["font_size"] = font_size
        if scale is not None:
            options["scale"] = scale
        try:
            typography = Typography.builtin(**options)
        except LayoutUnavailableError as exc:
            if debug:
                print(f"[DEBUG] {exc}")
            return cls(oracle=None, debug=debug, **kwargs)
        session = cls(oracle=LayoutOracle(typography, debug=debug), debug=debug, **kwargs)
        session.measure = None
        return session

    @property
    def cards(self) -> List[Card]:
        return self.result.cards

    @property
    def degraded(self) -> bool:
        return self.result.degraded

    def load_text(self, markdown: str, name: str = "cards") -> List[Turn]:
        self.name = name
        self.turns = parse_conversation(
            markdown, keep_preamble=self.keep_preamble, debug=self.debug
        )
        self.selected = list(range(len(self.turns)))
        suggestion = suggest_cover_title(self.turns)
        if suggestion and self.debug:
            print(f"[DEBUG] Suggested cover title: {suggestion}")
        self.generate()
        return self.turns

    def load_file(self, path: Path) -> List[Turn]:
        if not path.exists():
            raise FileNotFoundError(f"Markdown file not found: {path}")
        stem = path.name
        for suffix in (".markdown", ".md"):
            if stem.lower().endswith(suffix):
                stem = stem[: -len(suffix)]
                break
        return self.load_text(path.read_text(encoding="utf-8"), name=stem)

    def select(self, indices: Iterable[int]) -> List[Card]:
        chosen = sorted(set(indices))
        for index in chosen:
            if index < 0 or index >= len(self.turns):
                raise ValueError(
                    f"Turn index {index} out of range (document has {len(self.turns)} turns)"
                )
        self.selected = chosen
        return self.generate()

    def set_cover(self, enabled: bool) -> List[Card]:
        self.cover = enabled
        return self.generate()

    @property
    def selected_turns(self) -> List[Turn]:
        return [self.turns[index] for index in self.selected]

    def suggested_cover_title(self) -> Optional[str]:
        return suggest_cover_title(self.turns)

    def generate(self) -> List[Card]:
        turns = self.selected_turns
        if not turns:
            self.result = PaginationResult()
            return self.cards
        paginator = Paginator(self.measure, self.config, debug=self.debug)
        self.result = paginator.paginate(turns, cover=self.cover)
        return self.cards

    def renderer(self) -> CardRenderer:
        if self.oracle is None:
            raise LayoutUnavailableError("Cards cannot be drawn without a layout oracle.")
        return CardRenderer(
            self.oracle,
            style=self.style,
            cover=self.cover_options,
            config=self.config,
            debug=self.debug,
        )

    def export(
        self,
        output_root: Path,
        role_tags: Optional[Dict[Role, str]] = None,
        delay: float = EXPORT_DELAY,
        renderer: Optional[CardRenderer] = None,
        only: Optional[int] = None,
    ) -> ExportReport:
        """Write the cards as PNG files, or just card ``only``."""
        if not self.cards:
            return ExportReport(total=0)
        if only is not None and not 0 <= only < len(self.cards):
            raise ValueError(f"Card index {only} out of range ({len(self.cards)} cards)")
        renderer = renderer or self.renderer()
        target = build_target_directory(output_root, self.name)
        return export_cards(
            self.cards,
            renderer.render,
            target,
            volume=self.cover_options.volume,
            role_tags=role_tags or ROLE_TAGS,
            delay=delay,
            debug=self.debug,
            only=only,
        )
