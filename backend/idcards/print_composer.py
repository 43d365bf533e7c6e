from __future__ import annotations

import base64
from dataclasses import dataclass, field
from html import escape
from typing import Callable, Iterable, Sequence, Union

from loguru import logger
from PIL import Image

from .card_rendering import (
    CardRenderError,
    InteractiveCard,
    InteractiveTarget,
    RasterCard,
    RenderTarget,
)
from .card_templates import CardTemplate
from .geometry import inches_to_px
from .substitution import DataContext

DEFAULT_MARGIN_IN = 0.25

RenderedCard = Union[InteractiveCard, RasterCard]


@dataclass
class BatchFailure:
    index: int
    employee_id: str
    detail: str


@dataclass
class BatchResult:
    cards: list[RenderedCard] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)


def render_batch(
    template: CardTemplate,
    contexts: Iterable[DataContext],
    *,
    target_factory: Callable[[], RenderTarget] = InteractiveTarget,
) -> BatchResult:
    """Render one card per context with a fresh target each time.

    A card that fails is recorded in ``failures`` and the batch carries on.
    """
    result = BatchResult()
    for index, context in enumerate(contexts):
        try:
            card = target_factory().render(template, context)
        except (CardRenderError, ValueError, TypeError, OSError) as exc:
            employee_id = context.employee.employee_id
            detail = getattr(exc, "detail", str(exc))
            logger.warning(f"Card {index} ({employee_id}) failed to render: {detail}")
            result.failures.append(BatchFailure(index=index, employee_id=employee_id, detail=detail))
            continue
        result.cards.append(card)
    logger.info(
        f"Rendered {len(result.cards)} card(s) with template '{template.id}', "
        f"{len(result.failures)} failure(s)"
    )
    return result


def _card_size(card: RenderedCard) -> tuple[float, float]:
    if isinstance(card, InteractiveCard):
        return card.width_in, card.height_in
    width_px, height_px = card.size
    return width_px / card.dpi, height_px / card.dpi


def _ensure_uniform_size(cards: Sequence[RenderedCard]) -> tuple[float, float]:
    if not cards:
        raise CardRenderError("No cards to print.")
    width_in, height_in = _card_size(cards[0])
    for card in cards[1:]:
        other_width, other_height = _card_size(card)
        if abs(other_width - width_in) > 0.01 or abs(other_height - height_in) > 0.01:
            raise CardRenderError("All printed cards must share the same card dimensions.")
    return width_in, height_in


def _format_in(value: float) -> str:
    return f"{value:.4f}".rstrip("0").rstrip(".") + "in"


def _card_markup(card: RenderedCard) -> str:
    if isinstance(card, InteractiveCard):
        return card.to_html()
    png = base64.b64encode(card.to_png()).decode("ascii")
    return f'<img src="data:image/png;base64,{png}" alt="" style="width:100%;height:100%;display:block;"/>'


def compose_print_document(
    cards: Sequence[RenderedCard],
    *,
    margin_in: float = DEFAULT_MARGIN_IN,
    title: str = "ID Cards",
) -> str:
    """Build a print-ready HTML document with one card per page."""
    width_in, height_in = _ensure_uniform_size(cards)
    page_width = width_in + 2 * margin_in
    page_height = height_in + 2 * margin_in

    pages_markup: list[str] = []
    for card in cards:
        pages_markup.append(
            '<div class="print-card">'
            f"{_card_markup(card)}"
            "</div>"
        )

    html = (
        "<!doctype html>"
        "<html><head><meta charset='utf-8'>"
        f"<title>{escape(title)}</title>"
        "<style>"
        f"@page {{ size: {_format_in(page_width)} {_format_in(page_height)}; margin: {_format_in(margin_in)}; }}"
        "*{box-sizing:border-box;}"
        "html,body{margin:0;padding:0;background:white;}"
        "body{font-family:Inter,Arial,sans-serif;}"
        f".print-card{{width:{_format_in(width_in)};height:{_format_in(height_in)};"
        "overflow:hidden;break-inside:avoid;page-break-inside:avoid;"
        "page-break-after:always;break-after:page;}"
        ".print-card:last-child{page-break-after:auto;break-after:auto;}"
        ".print-card .id-card{width:100% !important;height:100% !important;}"
        "</style>"
        "</head><body>"
        f"{''.join(pages_markup)}"
        "</body></html>"
    )
    logger.info(f"Composed print document with {len(pages_markup)} card page(s)")
    return html


def compose_print_sheets(
    cards: Sequence[RasterCard],
    *,
    margin_in: float = DEFAULT_MARGIN_IN,
    background: str = "white",
) -> list[Image.Image]:
    """Place each raster card on its own page bitmap inset by ``margin_in``."""
    _ensure_uniform_size(cards)
    pages: list[Image.Image] = []
    for card in cards:
        margin_px = round(inches_to_px(margin_in, card.dpi))
        width_px, height_px = card.size
        page = Image.new("RGB", (width_px + 2 * margin_px, height_px + 2 * margin_px), background)
        with card.lock:
            snapshot = card.image.convert("RGB")
        page.paste(snapshot, (margin_px, margin_px))
        pages.append(page)
    return pages
