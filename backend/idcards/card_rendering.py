from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass, field
from functools import lru_cache
from html import escape
from io import BytesIO
import threading
from typing import Any, Callable

from loguru import logger
from PIL import Image, ImageColor, ImageDraw, ImageFont
import qrcode
import qrcode.constants
import qrcode.image.svg

from .card_templates import (
    CardElement,
    CardTemplate,
    CircleElement,
    ImageElement,
    LineElement,
    QRCodeElement,
    RectangleElement,
    TextElement,
)
from .geometry import (
    PRINT_DPI,
    SCREEN_DPI,
    authored_px,
    card_pixel_size,
    inches_to_px,
    qr_size_in,
    to_percent_box,
    to_pixel_box,
)
from .image_sources import ImageLoader, ImageLoadError
from .substitution import DataContext, resolve_image_source, substitute
from .verification import verification_url

LINE_HEIGHT = 1.2
DEFAULT_FONT_SIZE = 12


class CardRenderError(Exception):
    def __init__(self, detail: str, *, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def build_qr_code(payload: str) -> qrcode.QRCode:
    qr_code = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=1,
        border=0,
    )
    qr_code.add_data(payload)
    qr_code.make(fit=True)
    return qr_code


def build_qr_svg_data_uri(payload: str) -> str:
    if not payload:
        return ""
    qr_code = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=0,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr_code.add_data(payload)
    qr_code.make(fit=True)
    svg_bytes = qr_code.make_image().to_string()
    return f"data:image/svg+xml;base64,{base64.b64encode(svg_bytes).decode('ascii')}"


def build_qr_bitmap(payload: str, size_px: int) -> Image.Image:
    matrix = build_qr_code(payload).get_matrix()
    modules = len(matrix)
    module_image = Image.new("L", (modules, modules), 255)
    module_image.putdata([0 if cell else 255 for row in matrix for cell in row])
    return module_image.resize((size_px, size_px), Image.Resampling.NEAREST).convert("RGBA")


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> list[str]:
    """Greedy word wrap. A single word wider than ``max_width`` keeps its own line.

    Line breaks in ``text`` start a new paragraph; a blank paragraph yields an
    empty line so the following text keeps its vertical position.
    """
    lines: list[str] = []
    for paragraph in text.replace("\r\n", "\n").split("\n"):
        line = ""
        for word in paragraph.split(" "):
            candidate = f"{line} {word}" if line else word
            if measure(candidate) > max_width and line:
                lines.append(line)
                line = word
            else:
                line = candidate
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return lines


class RenderTarget(ABC):
    """Walks a template's elements in order and hands each to a draw method.

    Subclasses implement one ``draw_<kind>`` method per element kind. Kinds
    without a draw method (``UnknownElement``) are skipped.
    """

    draw_methods = {
        RectangleElement.kind: "draw_rectangle",
        CircleElement.kind: "draw_circle",
        LineElement.kind: "draw_line",
        TextElement.kind: "draw_text",
        ImageElement.kind: "draw_image",
        QRCodeElement.kind: "draw_qrcode",
    }

    def __init__(self, *, verification_base_url: str | None = None):
        self.verification_base_url = verification_base_url
        self.template: CardTemplate | None = None
        self.context: DataContext | None = None

    def render(self, template: CardTemplate, context: DataContext):
        self.template = template
        self.context = context
        self.begin()
        for element in template.elements:
            method_name = self.draw_methods.get(element.kind)
            if method_name is None:
                continue
            try:
                getattr(self, method_name)(element)
            except (ValueError, TypeError, OSError) as exc:
                logger.warning(
                    f"Skipping element '{element.id}' of template '{template.id}': {exc}"
                )
        return self.finish()

    def text_for(self, element: TextElement) -> str:
        return substitute(element.text, self.context)

    def image_source_for(self, element: ImageElement) -> str:
        return resolve_image_source(element.source, self.context)

    def qr_payload(self) -> str:
        return verification_url(self.context.employee.employee_id, self.verification_base_url)

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def finish(self): ...

    @abstractmethod
    def draw_rectangle(self, element: RectangleElement) -> None: ...

    @abstractmethod
    def draw_circle(self, element: CircleElement) -> None: ...

    @abstractmethod
    def draw_line(self, element: LineElement) -> None: ...

    @abstractmethod
    def draw_text(self, element: TextElement) -> None: ...

    @abstractmethod
    def draw_image(self, element: ImageElement) -> None: ...

    @abstractmethod
    def draw_qrcode(self, element: QRCodeElement) -> None: ...


# Interactive (DOM) rendering

VOID_TAGS = {"img"}


@dataclass
class VisualNode:
    tag: str
    kind: str = ""
    element_id: str = ""
    style: dict[str, str] = field(default_factory=dict)
    attrs: dict[str, str] = field(default_factory=dict)
    text: str = ""
    children: list[VisualNode] = field(default_factory=list)

    def to_html(self) -> str:
        attributes = dict(self.attrs)
        if self.element_id:
            attributes["data-element-id"] = self.element_id
        if self.kind:
            attributes["data-kind"] = self.kind
        if self.style:
            attributes["style"] = "".join(f"{key}:{value};" for key, value in self.style.items())
        rendered_attrs = "".join(
            f' {name}="{escape(str(value))}"' for name, value in attributes.items()
        )
        if self.tag in VOID_TAGS:
            return f"<{self.tag}{rendered_attrs}/>"
        inner = escape(self.text) + "".join(child.to_html() for child in self.children)
        return f"<{self.tag}{rendered_attrs}>{inner}</{self.tag}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "kind": self.kind,
            "element_id": self.element_id,
            "style": dict(self.style),
            "attrs": dict(self.attrs),
            "text": self.text,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class InteractiveCard:
    template_id: str
    width_in: float
    height_in: float
    root: VisualNode

    @property
    def nodes(self) -> list[VisualNode]:
        return self.root.children

    def to_html(self) -> str:
        return self.root.to_html()

    def to_dict(self) -> dict[str, Any]:
        return {
            "template_id": self.template_id,
            "width_in": self.width_in,
            "height_in": self.height_in,
            "root": self.root.to_dict(),
        }


def _format_percent(value: float) -> str:
    return f"{value:.4f}".rstrip("0").rstrip(".") + "%"


def _format_px(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".") + "px"


class InteractiveTarget(RenderTarget):
    """Builds a retained node tree for screen display.

    Geometry is expressed in percentages of the card so the tree scales with
    any container. Images and QR codes are left to the host to load.
    """

    def begin(self) -> None:
        template = self.template
        self._root = VisualNode(
            tag="div",
            kind="card",
            attrs={"class": "id-card", "data-template-id": template.id},
            style={
                "position": "relative",
                "overflow": "hidden",
                "width": _format_px(template.width * SCREEN_DPI),
                "height": _format_px(template.height * SCREEN_DPI),
                "aspect-ratio": f"{template.width} / {template.height}",
                "background-color": template.background_color,
            },
        )

    def finish(self) -> InteractiveCard:
        return InteractiveCard(
            template_id=self.template.id,
            width_in=self.template.width,
            height_in=self.template.height,
            root=self._root,
        )

    def _box_style(self, element: CardElement) -> dict[str, str]:
        box = to_percent_box(element, self.template)
        return {
            "position": "absolute",
            "left": _format_percent(box.left),
            "top": _format_percent(box.top),
            "width": _format_percent(box.width) if box.width is not None else "auto",
            "height": _format_percent(box.height) if box.height is not None else "auto",
            "box-sizing": "border-box",
            "overflow": "hidden",
        }

    def _append(self, element: CardElement, node: VisualNode) -> None:
        node.kind = element.kind
        node.element_id = element.id
        self._root.children.append(node)

    def draw_rectangle(self, element: RectangleElement) -> None:
        style = self._box_style(element)
        if element.background_color:
            style["background-color"] = element.background_color
        if element.opacity != 1:
            style["opacity"] = f"{element.opacity:g}"
        if element.border_color and element.border_width:
            style["border"] = f"{element.border_width:g}px solid {element.border_color}"
        self._append(element, VisualNode(tag="div", style=style))

    def draw_circle(self, element: CircleElement) -> None:
        style = self._box_style(element)
        diameter = 2 * element.radius
        if element.width is None:
            style["width"] = _format_percent(diameter / self.template.width * 100)
        if element.height is None:
            style["height"] = _format_percent(diameter / self.template.height * 100)
        style["background-color"] = element.background_color
        style["border-radius"] = "50%"
        self._append(element, VisualNode(tag="div", style=style))

    def draw_line(self, element: LineElement) -> None:
        style = self._box_style(element)
        style["height"] = "0"
        style["border-top"] = f"{element.border_width:g}px solid {element.border_color}"
        self._append(element, VisualNode(tag="div", style=style))

    def draw_text(self, element: TextElement) -> None:
        style = self._box_style(element)
        justify = {"center": "center", "right": "flex-end"}.get(element.align, "flex-start")
        style.update(
            {
                "display": "flex",
                "align-items": "center",
                "justify-content": justify,
                "text-align": element.align,
                "color": element.color,
                "font-size": f"{element.font_size / DEFAULT_FONT_SIZE:g}rem",
                "font-weight": "bold" if element.font_weight == "bold" else "normal",
                "line-height": f"{LINE_HEIGHT:g}",
                "white-space": "pre-line",
                "word-break": "break-word",
            }
        )
        self._append(element, VisualNode(tag="div", style=style, text=self.text_for(element)))

    def draw_image(self, element: ImageElement) -> None:
        source = self.image_source_for(element)
        if not source:
            return
        style = self._box_style(element)
        style["object-fit"] = "cover"
        if element.border_color and element.border_width:
            style["border"] = f"{element.border_width:g}px solid {element.border_color}"
        self._append(
            element,
            VisualNode(tag="img", style=style, attrs={"src": source, "alt": element.id}),
        )

    def draw_qrcode(self, element: QRCodeElement) -> None:
        payload = self.qr_payload()
        size = _format_px(qr_size_in(element) * SCREEN_DPI)
        style = self._box_style(element)
        style.update({"display": "flex", "align-items": "center", "justify-content": "center"})
        code = VisualNode(
            tag="img",
            kind="qrcode-image",
            attrs={"src": build_qr_svg_data_uri(payload), "alt": "QR", "data-value": payload},
            style={"width": size, "height": size, "max-width": "100%", "max-height": "100%"},
        )
        self._append(element, VisualNode(tag="div", style=style, children=[code]))


def render_interactive(
    template: CardTemplate,
    context: DataContext,
    *,
    verification_base_url: str | None = None,
) -> InteractiveCard:
    return InteractiveTarget(verification_base_url=verification_base_url).render(template, context)


# Raster rendering

_executor_lock = threading.Lock()
_shared_executor: ThreadPoolExecutor | None = None


def shared_image_executor(max_workers: int = 4) -> ThreadPoolExecutor:
    global _shared_executor
    with _executor_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="idcard-image",
            )
        return _shared_executor


@lru_cache(maxsize=64)
def load_font(size_px: int, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    font_name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(font_name, size_px)
    except OSError:
        return ImageFont.load_default(size=size_px)


def _rgba(color: str, opacity: float = 1.0) -> tuple[int, int, int, int]:
    rgb = ImageColor.getrgb(color)
    alpha = rgb[3] if len(rgb) == 4 else 255
    return rgb[0], rgb[1], rgb[2], round(alpha * opacity)


@dataclass(frozen=True)
class TextLine:
    element_id: str
    text: str
    x: float
    y: float
    width: float
    max_width: float | None


@dataclass
class RasterCard:
    template_id: str
    dpi: float
    generation: int
    image: Image.Image
    text_lines: list[TextLine] = field(default_factory=list)
    pending: list[Future] = field(default_factory=list)
    closed: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def wait(self, timeout: float | None = None) -> bool:
        """Block until issued image loads settle. Returns False on timeout.

        On timeout the card is closed: loads that finish later are dropped
        instead of writing into an image that may already be encoded.
        """
        if not self.pending:
            return True
        _, not_done = wait_for_futures(self.pending, timeout=timeout)
        if not_done:
            self.close()
            return False
        return True

    def close(self) -> None:
        with self.lock:
            self.closed = True

    def to_png(self) -> bytes:
        buffer = BytesIO()
        with self.lock:
            self.image.save(buffer, format="PNG")
        return buffer.getvalue()


class RasterTarget(RenderTarget):
    """Draws a card into a Pillow RGBA buffer.

    Each call to :meth:`render` starts a new generation with a fresh buffer.
    Image loads run on ``executor`` and only write into the buffer of the
    generation that issued them.
    """

    def __init__(
        self,
        *,
        dpi: float = PRINT_DPI,
        verification_base_url: str | None = None,
        image_loader: Callable[[str], Image.Image] | None = None,
        executor: Executor | None = None,
        max_pixels: int | None = None,
    ):
        super().__init__(verification_base_url=verification_base_url)
        if float(dpi) <= 0:
            raise CardRenderError("dpi must be > 0.")
        self.dpi = float(dpi)
        self.max_pixels = max_pixels
        self.image_loader = image_loader or ImageLoader()
        self.executor = executor
        self._lock = threading.RLock()
        self._generation = 0
        self._image: Image.Image | None = None
        self._card: RasterCard | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self) -> None:
        size = card_pixel_size(self.template, self.dpi)
        if self.max_pixels and size[0] * size[1] > self.max_pixels:
            raise CardRenderError(
                f"A {size[0]}x{size[1]} px card exceeds the {self.max_pixels} pixel limit."
            )
        with self._lock:
            self._generation += 1
            self._image = Image.new("RGBA", size, _rgba(self.template.background_color))
            self._card = RasterCard(
                template_id=self.template.id,
                dpi=self.dpi,
                generation=self._generation,
                image=self._image,
                lock=self._lock,
            )

    def finish(self) -> RasterCard:
        return self._card

    def _draw(self) -> ImageDraw.ImageDraw:
        return ImageDraw.Draw(self._image)

    def _scaled(self, value: float) -> int:
        return max(1, round(authored_px(value, self.dpi)))

    def draw_rectangle(self, element: RectangleElement) -> None:
        box = to_pixel_box(element, self.dpi)
        bounds = [box.x, box.y, box.x + (box.width or 0), box.y + (box.height or 0)]
        with self._lock:
            if element.background_color:
                fill = _rgba(element.background_color, element.opacity)
                overlay = Image.new("RGBA", self._image.size, (0, 0, 0, 0))
                ImageDraw.Draw(overlay).rectangle(bounds, fill=fill)
                self._image.alpha_composite(overlay)
            if element.border_color and element.border_width:
                self._draw().rectangle(
                    bounds,
                    outline=_rgba(element.border_color),
                    width=self._scaled(element.border_width),
                )

    def draw_circle(self, element: CircleElement) -> None:
        box = to_pixel_box(element, self.dpi)
        radius = inches_to_px(element.radius, self.dpi)
        with self._lock:
            self._draw().ellipse(
                [box.x, box.y, box.x + 2 * radius, box.y + 2 * radius],
                fill=_rgba(element.background_color),
            )

    def draw_line(self, element: LineElement) -> None:
        box = to_pixel_box(element, self.dpi)
        with self._lock:
            self._draw().line(
                [(box.x, box.y), (box.x + (box.width or 0), box.y)],
                fill=_rgba(element.border_color),
                width=self._scaled(element.border_width),
            )

    def draw_text(self, element: TextElement) -> None:
        box = to_pixel_box(element, self.dpi)
        font_px = self._scaled(element.font_size or DEFAULT_FONT_SIZE)
        font = load_font(font_px, element.font_weight == "bold")
        anchor = {"center": "ma", "right": "ra"}.get(element.align, "la")
        if element.align == "center":
            anchor_x = box.x + (box.width or 0) / 2
        elif element.align == "right":
            anchor_x = box.x + (box.width or 0)
        else:
            anchor_x = box.x
        text = self.text_for(element)

        with self._lock:
            draw = self._draw()

            def measure(value: str) -> float:
                return draw.textlength(value, font=font)

            if box.width:
                lines = wrap_text(text, box.width, measure)
            else:
                lines = text.replace("\r\n", "\n").split("\n") if text else []
            line_y = box.y
            for line in lines:
                if not line:
                    line_y += font_px * LINE_HEIGHT
                    continue
                draw.text((anchor_x, line_y), line, fill=_rgba(element.color), font=font, anchor=anchor)
                self._card.text_lines.append(
                    TextLine(
                        element_id=element.id,
                        text=line,
                        x=anchor_x,
                        y=line_y,
                        width=measure(line),
                        max_width=box.width,
                    )
                )
                line_y += font_px * LINE_HEIGHT

    def draw_image(self, element: ImageElement) -> None:
        source = self.image_source_for(element)
        if not source:
            return
        executor = self.executor or shared_image_executor()
        with self._lock:
            future = executor.submit(
                self._load_and_composite,
                element,
                source,
                self._card,
            )
            self._card.pending.append(future)

    def _load_and_composite(
        self,
        element: ImageElement,
        source: str,
        card: RasterCard,
    ) -> bool:
        try:
            bitmap = self.image_loader(source)
        except (ImageLoadError, OSError, ValueError) as exc:
            logger.warning(f"Image for element '{element.id}' could not be loaded: {exc}")
            return False

        box = to_pixel_box(element, self.dpi)
        width = round(box.width) if box.width else bitmap.width
        height = round(box.height) if box.height else bitmap.height
        origin = (round(box.x), round(box.y))
        buffer = card.image
        with self._lock:
            if card.closed or card.generation != self._generation or buffer is not self._image:
                logger.debug(
                    f"Discarding image for element '{element.id}' from render generation {card.generation}"
                )
                return False
            if element.border_color and element.border_width:
                ImageDraw.Draw(buffer).rectangle(
                    [origin[0], origin[1], origin[0] + width, origin[1] + height],
                    outline=_rgba(element.border_color),
                    width=self._scaled(element.border_width),
                )
            scaled = bitmap.convert("RGBA").resize((max(1, width), max(1, height)), Image.Resampling.LANCZOS)
            buffer.alpha_composite(scaled, dest=origin)
        return True

    def draw_qrcode(self, element: QRCodeElement) -> None:
        box = to_pixel_box(element, self.dpi)
        size_px = max(1, round(inches_to_px(qr_size_in(element), self.dpi)))
        bitmap = build_qr_bitmap(self.qr_payload(), size_px)
        with self._lock:
            self._image.alpha_composite(bitmap, dest=(round(box.x), round(box.y)))


def render_to_buffer(
    template: CardTemplate,
    context: DataContext,
    dpi: float = PRINT_DPI,
    *,
    verification_base_url: str | None = None,
    image_loader: Callable[[str], Image.Image] | None = None,
    executor: Executor | None = None,
) -> RasterCard:
    target = RasterTarget(
        dpi=dpi,
        verification_base_url=verification_base_url,
        image_loader=image_loader,
        executor=executor,
    )
    return target.render(template, context)
