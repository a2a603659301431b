from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image
from reportlab.lib.pagesizes import A4, A5, legal, letter
from reportlab.platypus import Image as PlatypusImage
from reportlab.platypus import PageBreak, SimpleDocTemplate

from chatcards.layout import CARD_SIZE

POINTS_PER_PIXEL = 72.0 / 96.0
CARD_PAGE_SIZE = (CARD_SIZE[0] * POINTS_PER_PIXEL, CARD_SIZE[1] * POINTS_PER_PIXEL)
PAGE_SIZE_ALIASES: Dict[str, Tuple[float, float]] = {
    "card": CARD_PAGE_SIZE,
    "letter": letter,
    "a4": A4,
    "a5": A5,
    "legal": legal,
}
DEFAULT_PAGE_SIZE = "card"


@dataclass
class PdfExportOptions:
    images: Sequence[Path]
    output_path: Path
    page_size: Tuple[float, float]
    margin: float = 0.0
    debug: bool = False


def resolve_page_size(spec: str | None) -> Tuple[float, float]:
    if not spec:
        return PAGE_SIZE_ALIASES[DEFAULT_PAGE_SIZE]
    normalized = spec.strip().lower()
    if normalized in PAGE_SIZE_ALIASES:
        return PAGE_SIZE_ALIASES[normalized]
    match = re.match(r"^\s*(\d+(?:\.\d+)?)\s*[x×]\s*(\d+(?:\.\d+)?)\s*$", normalized)
    if match:
        width = float(match.group(1))
        height = float(match.group(2))
        return (width, height)
    raise ValueError(
        f"Unrecognized page size '{spec}'. "
        f"Use one of {', '.join(sorted(PAGE_SIZE_ALIASES))} "
        "or provide custom dimensions like '810x1350'."
    )


def _fit_image(
    image_path: Path,
    frame_width: float,
    frame_height: float,
) -> Tuple[float, float]:
    with Image.open(image_path) as image:
        width_px, height_px = image.size
    aspect = height_px / width_px if width_px else 1.0
    target_width = frame_width
    target_height = target_width * aspect
    if target_height > frame_height:
        scale = frame_height / target_height
        target_height = frame_height
        target_width = max(1.0, target_width * scale)
    return target_width, target_height


def bundle_cards_to_pdf(options: PdfExportOptions) -> Path:
    """Write one PDF page per card image, in the given order."""
    if not options.images:
        raise ValueError("No card images to bundle into a PDF.")

    page_width, page_height = options.page_size
    # Platypus frames keep a few points of inner padding.
    frame_width = max(10.0, page_width - options.margin * 2 - 12)
    frame_height = max(10.0, page_height - options.margin * 2 - 12)

    flowables: List[object] = []
    for position, image_path in enumerate(options.images):
        width, height = _fit_image(image_path, frame_width, frame_height)
        flowables.append(PlatypusImage(str(image_path), width=width, height=height))
        if position < len(options.images) - 1:
            flowables.append(PageBreak())
        if options.debug:
            print(f"[DEBUG] Added {image_path.name} at {width:.0f}x{height:.0f}pt")

    options.output_path.parent.mkdir(parents=True, exist_ok=True)
    if options.debug:
        print(f"[DEBUG] Writing PDF to {options.output_path}")

    doc = SimpleDocTemplate(
        str(options.output_path),
        pagesize=options.page_size,
        leftMargin=options.margin,
        rightMargin=options.margin,
        topMargin=options.margin,
        bottomMargin=options.margin,
    )
    doc.build(flowables)
    return options.output_path


def export_cards_pdf(
    images: Sequence[Path],
    output_path: Path,
    page_size_spec: Optional[str] = None,
    debug: bool = False,
) -> Path:
    options = PdfExportOptions(
        images=list(images),
        output_path=output_path,
        page_size=resolve_page_size(page_size_spec),
        debug=debug,
    )
    return bundle_cards_to_pdf(options)
