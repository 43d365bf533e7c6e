from __future__ import annotations

from dataclasses import dataclass

from .card_templates import CardElement, CardTemplate

SCREEN_DPI = 96
PRINT_DPI = 300

# Border widths and font sizes are authored in CSS pixels of the screen preview.
AUTHORING_DPI = SCREEN_DPI


@dataclass(frozen=True)
class InchBox:
    x: float
    y: float
    width: float | None = None
    height: float | None = None


@dataclass(frozen=True)
class PercentBox:
    left: float
    top: float
    width: float | None = None
    height: float | None = None


@dataclass(frozen=True)
class PixelBox:
    x: float
    y: float
    width: float | None = None
    height: float | None = None


def _require_dpi(dpi: float) -> float:
    value = float(dpi)
    if value <= 0:
        raise ValueError("dpi must be > 0.")
    return value


def element_box(element: CardElement) -> InchBox:
    return InchBox(x=element.x, y=element.y, width=element.width, height=element.height)


def to_percent_box(element: CardElement | InchBox, template: CardTemplate) -> PercentBox:
    return PercentBox(
        left=element.x / template.width * 100,
        top=element.y / template.height * 100,
        width=element.width / template.width * 100 if element.width else None,
        height=element.height / template.height * 100 if element.height else None,
    )


def from_percent_box(box: PercentBox, template: CardTemplate) -> InchBox:
    return InchBox(
        x=box.left / 100 * template.width,
        y=box.top / 100 * template.height,
        width=box.width / 100 * template.width if box.width is not None else None,
        height=box.height / 100 * template.height if box.height is not None else None,
    )


def inches_to_px(value: float, dpi: float) -> float:
    return value * _require_dpi(dpi)


def authored_px(value: float, dpi: float) -> float:
    """Scale a value authored in preview pixels to ``dpi``."""
    return value * _require_dpi(dpi) / AUTHORING_DPI


def to_pixel_box(element: CardElement | InchBox, dpi: float) -> PixelBox:
    scale = _require_dpi(dpi)
    return PixelBox(
        x=element.x * scale,
        y=element.y * scale,
        width=element.width * scale if element.width else None,
        height=element.height * scale if element.height else None,
    )


def card_pixel_size(template: CardTemplate, dpi: float) -> tuple[int, int]:
    scale = _require_dpi(dpi)
    return max(1, round(template.width * scale)), max(1, round(template.height * scale))


def qr_size_in(element: CardElement) -> float:
    return min(element.width or 0.5, element.height or 0.5)
