from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from chatcards import exporter, layout, pagination, render
from chatcards.parser import Role, preview_text
from chatcards.session import CardSession

from . import html_export, pdf_export


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chatsnap",
        description="Convert a Markdown conversation transcript into image cards.",
    )
    parser.add_argument(
        "--mode",
        choices=("cards", "list", "pdf", "html"),
        default="cards",
        help=(
            "cards: generate image cards (default); list: print the parsed turns; "
            "pdf: generate cards and bundle them into one PDF; "
            "html: write the cards as one HTML page with MathJax formulas."
        ),
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="Path to the Markdown conversation transcript.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output_cards"),
        help="Directory where generated cards will be written (default: output_cards).",
    )
    parser.add_argument(
        "--volume",
        type=str,
        default="1",
        help="Series volume number used on cards and in file names (default: 1).",
    )
    parser.add_argument(
        "--cover",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Prepend a cover card (default: on).",
    )
    parser.add_argument("--title", type=str, help="Cover title (default: first assistant sentence).")
    parser.add_argument("--subtitle", type=str, default="", help="Cover subtitle.")
    parser.add_argument("--topic", type=str, default="", help="Topic tag shown on the cover.")
    parser.add_argument(
        "--signature",
        type=str,
        default=render.CoverOptions.signature,
        help=f"Author signature (default: {render.CoverOptions.signature}).",
    )
    parser.add_argument(
        "--select",
        type=str,
        help="Comma separated turn indices to include, as printed by --mode=list (default: all).",
    )
    parser.add_argument(
        "--card",
        type=int,
        help="Export only the card at this position (0 is the cover when present).",
    )
    parser.add_argument(
        "--keep-preamble",
        action="store_true",
        help="Keep text before the first user prompt as an assistant turn.",
    )
    parser.add_argument(
        "--font",
        type=Path,
        help="Path to a TrueType/OpenType font file to use when rendering text.",
    )
    parser.add_argument(
        "--font-index",
        type=int,
        default=0,
        help="Font face index when loading from TTC collections (default: 0).",
    )
    parser.add_argument(
        "--font-size",
        type=int,
        default=layout.DEFAULT_FONT_SIZE,
        help=f"Base font size in logical pixels (default: {layout.DEFAULT_FONT_SIZE}).",
    )
    parser.add_argument(
        "--scale",
        type=float,
        default=layout.DEFAULT_SCALE,
        help=f"Rasterization scale factor (default: {layout.DEFAULT_SCALE}).",
    )
    parser.add_argument(
        "--background",
        type=str,
        default=render.DEFAULT_BACKGROUND,
        help=f"Background color (hex or alias) or image path (default: {render.DEFAULT_BACKGROUND}).",
    )
    parser.add_argument(
        "--text-color",
        type=str,
        help="Override automatically chosen text color (hex, e.g. #000000).",
    )
    parser.add_argument(
        "--user-name",
        type=str,
        default=render.CardStyle.user_name,
        help=f"Display name for user turns (default: {render.CardStyle.user_name}).",
    )
    parser.add_argument(
        "--assistant-name",
        type=str,
        default=render.CardStyle.assistant_name,
        help=f"Display name for assistant turns (default: {render.CardStyle.assistant_name}).",
    )
    parser.add_argument(
        "--assistant-tag",
        type=str,
        default=exporter.ROLE_TAGS[Role.ASSISTANT],
        help=(
            "File name tag for assistant cards "
            f"(default: {exporter.ROLE_TAGS[Role.ASSISTANT]})."
        ),
    )
    parser.add_argument(
        "--budget",
        type=int,
        default=layout.CONTENT_BUDGET,
        help=f"Content area height per card in logical pixels (default: {layout.CONTENT_BUDGET}).",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=exporter.EXPORT_DELAY,
        help=f"Seconds to wait between cards while exporting (default: {exporter.EXPORT_DELAY}).",
    )
    parser.add_argument(
        "--page-size",
        type=str,
        default=pdf_export.DEFAULT_PAGE_SIZE,
        help=(
            "PDF page size name (card, letter, a4, ...) or WIDTHxHEIGHT in points "
            f"(pdf mode, default: {pdf_export.DEFAULT_PAGE_SIZE})."
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return parser.parse_args(argv)


def _parse_selection(spec: Optional[str]) -> Optional[List[int]]:
    if not spec:
        return None
    indices: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, _, end = part.partition("-")
            indices.extend(range(int(start), int(end) + 1))
        else:
            indices.append(int(part))
    return indices


def _build_session(args: argparse.Namespace, with_fonts: bool = True) -> CardSession:
    style = render.CardStyle(
        background=args.background,
        text_color=args.text_color,
        user_name=args.user_name,
        assistant_name=args.assistant_name,
    )
    cover = render.CoverOptions(
        subtitle=args.subtitle,
        topic=args.topic,
        signature=args.signature,
        volume=args.volume,
    )
    options = dict(
        config=pagination.PaginationConfig(budget=args.budget),
        style=style,
        cover_options=cover,
        keep_preamble=args.keep_preamble,
    )
    if not with_fonts:
        return CardSession(debug=args.debug, **options)
    return CardSession.with_fonts(
        font_path=args.font,
        font_size=args.font_size,
        font_index=args.font_index,
        scale=args.scale,
        debug=args.debug,
        **options,
    )


def _print_turns(session: CardSession) -> None:
    for index, turn in enumerate(session.turns):
        label = "User" if turn.role is Role.USER else session.style.assistant_name
        print(f"[{index:>3}] {label:<10} {preview_text(turn)}")


def _write_html(session: CardSession, args: argparse.Namespace) -> int:
    cards = session.cards if args.card is None else [session.cards[args.card]]
    html_path = args.output_dir / f"Vol{args.volume}_{session.name}.html"
    html_export.export_cards_html(
        cards,
        html_path,
        style=session.style,
        cover=session.cover_options,
        debug=args.debug,
    )
    print(f"Generated HTML with {len(cards)} cards at {html_path.resolve()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if not args.input.exists():
        raise SystemExit(f"Markdown file not found: {args.input}")

    try:
        if not Path(args.background).is_file():
            render.parse_color(args.background)
        if args.text_color:
            render.parse_color(args.text_color)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    session = _build_session(args, with_fonts=args.mode != "list")
    session.load_file(args.input)
    if not session.turns:
        print(f"No conversation found in {args.input}")
        return 1

    if args.mode == "list":
        _print_turns(session)
        return 0

    try:
        selection = _parse_selection(args.select)
        if selection is not None:
            session.select(selection)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    session.cover_options.title = args.title or session.suggested_cover_title() or session.cover_options.title
    session.set_cover(args.cover)
    if session.degraded:
        print(
            "Warning: no usable font found; one card per turn with Pillow's "
            "built-in font, long turns may overflow. Pass --font to fix."
        )
    if args.card is not None and not 0 <= args.card < len(session.cards):
        raise SystemExit(f"Card index {args.card} out of range ({len(session.cards)} cards)")

    if args.mode == "html":
        return _write_html(session, args)

    if session.oracle is None:
        raise SystemExit(
            "Cannot draw cards without a font. Pass --font with a TrueType/OpenType file."
        )

    role_tags = dict(exporter.ROLE_TAGS)
    role_tags[Role.ASSISTANT] = args.assistant_tag
    report = session.export(
        args.output_dir, role_tags=role_tags, delay=args.delay, only=args.card
    )
    output_location = report.output_dir.resolve() if report.output_dir else args.output_dir.resolve()
    print(f"Generated {report.exported} of {report.total} cards in {output_location}")
    for failure in report.failures:
        print(f"  failed: {failure.filename}: {failure.error}")

    if args.mode == "pdf" and report.written:
        pdf_path = output_location / f"Vol{args.volume}_{session.name}.pdf"
        try:
            pdf_export.export_cards_pdf(
                report.written,
                pdf_path,
                page_size_spec=args.page_size,
                debug=args.debug,
            )
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        print(f"Generated PDF {pdf_path}")

    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
