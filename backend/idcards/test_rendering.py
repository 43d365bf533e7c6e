import base64
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from io import BytesIO

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase
from PIL import Image

from .card_rendering import (
    CardRenderError,
    InteractiveTarget,
    RasterTarget,
    render_interactive,
    render_to_buffer,
    wrap_text,
)
from .card_templates import (
    CardTemplate,
    CircleElement,
    ImageElement,
    QRCodeElement,
    RectangleElement,
    TextElement,
    UnknownElement,
    get_template,
    list_templates,
    template_from_payload,
    template_to_payload,
)
from .geometry import (
    PercentBox,
    card_pixel_size,
    from_percent_box,
    to_percent_box,
    to_pixel_box,
)
from .image_sources import ImageLoader, ImageLoadError
from .print_composer import compose_print_document, compose_print_sheets, render_batch
from .substitution import (
    CompanySettingsRecord,
    DataContext,
    EmployeeRecord,
    format_short_date,
    resolve_image_source,
    substitute,
)
from .verification import DEFAULT_VERIFICATION_BASE_URL, verification_url

RED = (255, 0, 0, 255)
WHITE = (255, 255, 255, 255)


def _context(**employee_fields) -> DataContext:
    employee = {
        "employee_id": "SF-0001",
        "name": "John Doe",
        "phone": "+91-9876543210",
        "photo_url": None,
        "status": "active",
        "id_card_valid_from": date(2024, 1, 1),
        "id_card_valid_until": date(2026, 12, 31),
        "department_name": "Security",
        "designation_name": "Security Guard",
        "location_name": "New Delhi Office",
    }
    employee.update(employee_fields)
    return DataContext(
        employee=EmployeeRecord(**employee),
        company=CompanySettingsRecord(company_name="SecureForce India", logo_url=None),
    )


def _solid_loader(color=RED):
    calls = []

    def load(source):
        calls.append(source)
        return Image.new("RGBA", (10, 10), color)

    load.calls = calls
    return load


def _photo_template(source="{{employee_photo}}") -> CardTemplate:
    return CardTemplate(
        id="photo-only",
        name="Photo only",
        width=3.0,
        height=2.0,
        background_color="#ffffff",
        elements=(ImageElement("photo", 0.5, 0.5, 1.0, 1.0, source=source),),
    )


class GeometryTests(SimpleTestCase):
    def setUp(self):
        self.template = get_template("classic-professional")

    def test_percent_round_trip_restores_inches(self):
        for element in self.template.elements:
            restored = from_percent_box(to_percent_box(element, self.template), self.template)
            self.assertAlmostEqual(restored.x, element.x, places=9)
            self.assertAlmostEqual(restored.y, element.y, places=9)
            if element.width is not None:
                self.assertAlmostEqual(restored.width, element.width, places=9)
            if element.height is not None:
                self.assertAlmostEqual(restored.height, element.height, places=9)

    def test_percent_box_is_relative_to_card(self):
        box = to_percent_box(RectangleElement("half", 0, 0, 1.6875, 2.125), self.template)
        self.assertEqual(box, PercentBox(left=0, top=0, width=50, height=100))

    def test_pixel_geometry_scales_linearly_with_dpi(self):
        element = TextElement("name", 1.1, 0.7, 1.45, 0.25)
        at_96 = to_pixel_box(element, 96)
        at_192 = to_pixel_box(element, 192)
        self.assertAlmostEqual(at_192.x, at_96.x * 2)
        self.assertAlmostEqual(at_192.y, at_96.y * 2)
        self.assertAlmostEqual(at_192.width, at_96.width * 2)
        self.assertAlmostEqual(at_192.height, at_96.height * 2)

    def test_card_pixel_size_at_screen_and_print_dpi(self):
        self.assertEqual(card_pixel_size(self.template, 96), (324, 204))
        self.assertEqual(card_pixel_size(self.template, 300), (1012, 638))

    def test_non_positive_dpi_is_rejected(self):
        with self.assertRaises(ValueError):
            to_pixel_box(self.template.elements[0], 0)
        with self.assertRaises(CardRenderError):
            RasterTarget(dpi=-1)


class SubstitutionTests(SimpleTestCase):
    def test_replaces_known_tokens(self):
        self.assertEqual(
            substitute("{{employee_name}} ({{employee_id}})", _context()),
            "John Doe (SF-0001)",
        )

    def test_missing_values_become_empty(self):
        context = _context(designation_name="", phone="")
        self.assertEqual(substitute("[{{designation_name}}|{{employee_phone}}]", context), "[|]")

    def test_unknown_tokens_are_left_verbatim(self):
        self.assertEqual(
            substitute("Hello {{nickname}} {{ employee_name }}", _context()),
            "Hello {{nickname}} {{ employee_name }}",
        )

    def test_values_are_not_substituted_twice(self):
        context = _context(name="{{employee_id}}")
        self.assertEqual(substitute("{{employee_name}}", context), "{{employee_id}}")

    def test_validity_dates_use_short_format(self):
        self.assertEqual(
            substitute("{{id_valid_from_short}} - {{id_valid_until_short}}", _context()),
            "1/1/2024 - 31/12/2026",
        )
        self.assertEqual(format_short_date(None), "")
        self.assertEqual(format_short_date("2025-03-07"), "7/3/2025")

    def test_image_sources_resolve_or_drop(self):
        context = _context(photo_url="https://example.com/p.png")
        self.assertEqual(resolve_image_source("{{employee_photo}}", context), "https://example.com/p.png")
        self.assertEqual(resolve_image_source("{{employee_photo}}", _context()), "")
        self.assertEqual(resolve_image_source("{{unknown_photo}}", context), "")
        self.assertEqual(resolve_image_source("", context), "")


class VerificationUrlTests(SimpleTestCase):
    def test_builds_url_from_base(self):
        self.assertEqual(
            verification_url("SF-0042", "https://example.com"),
            "https://example.com/verify/SF-0042",
        )

    def test_trailing_slash_is_ignored(self):
        self.assertEqual(
            verification_url("SF-0042", "https://example.com/"),
            "https://example.com/verify/SF-0042",
        )

    def test_default_base(self):
        self.assertEqual(
            verification_url("SF-0001"),
            f"{DEFAULT_VERIFICATION_BASE_URL}/verify/SF-0001",
        )


class TemplateDefinitionTests(SimpleTestCase):
    def test_catalogue_templates_are_registered(self):
        ids = [template.id for template in list_templates()]
        self.assertIn("classic-professional", ids)
        self.assertEqual(len(ids), len(set(ids)))

    def test_payload_round_trip_keeps_elements(self):
        template = get_template("modern-accent")
        rebuilt = template_from_payload(template_to_payload(template))
        self.assertEqual(rebuilt, template)

    def test_unknown_element_type_is_kept_as_unknown(self):
        template = template_from_payload(
            {
                "id": "custom",
                "width": 3.375,
                "height": 2.125,
                "elements": [{"id": "star", "type": "hexagon", "x": 0.1, "y": 0.1}],
            }
        )
        self.assertIsInstance(template.elements[0], UnknownElement)
        self.assertEqual(template_to_payload(template)["elements"][0]["type"], "hexagon")

    def test_rejects_non_positive_card_size(self):
        with self.assertRaises(ValidationError) as ctx:
            template_from_payload({"id": "bad", "width": 0, "height": 2})
        self.assertIn("width", ctx.exception.message_dict)

    def test_rejects_duplicate_element_ids(self):
        with self.assertRaises(ValidationError) as ctx:
            template_from_payload(
                {
                    "id": "dup",
                    "width": 3,
                    "height": 2,
                    "elements": [
                        {"id": "a", "type": "line", "x": 0, "y": 0, "width": 1},
                        {"id": "a", "type": "line", "x": 0, "y": 1, "width": 1},
                    ],
                }
            )
        self.assertIn("elements[1].id", ctx.exception.message_dict)

    def test_rejects_out_of_range_opacity(self):
        with self.assertRaises(ValidationError) as ctx:
            template_from_payload(
                {
                    "id": "opacity",
                    "width": 3,
                    "height": 2,
                    "elements": [
                        {"id": "bg", "type": "rectangle", "x": 0, "y": 0, "width": 3, "height": 2, "opacity": 1.5}
                    ],
                }
            )
        self.assertIn("elements[0].opacity", ctx.exception.message_dict)

    def test_rejects_non_finite_numbers(self):
        for value in ("nan", "inf", "-inf", float("nan")):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError) as ctx:
                    template_from_payload({"id": "bad", "width": value, "height": 2})
                self.assertIn("width", ctx.exception.message_dict)

        with self.assertRaises(ValidationError) as ctx:
            template_from_payload(
                {
                    "id": "bad-x",
                    "width": 3,
                    "height": 2,
                    "elements": [{"id": "a", "type": "line", "x": "nan", "y": 0, "width": 1}],
                }
            )
        self.assertIn("elements[0].x", ctx.exception.message_dict)

    def test_rejects_oversized_cards_and_fonts(self):
        with self.assertRaises(ValidationError) as ctx:
            template_from_payload({"id": "huge", "width": 100000, "height": 2})
        self.assertIn("width", ctx.exception.message_dict)

        with self.assertRaises(ValidationError) as ctx:
            template_from_payload(
                {
                    "id": "shout",
                    "width": 3,
                    "height": 2,
                    "elements": [
                        {"id": "t", "type": "text", "x": 0, "y": 0, "text": "A", "fontSize": 1e9}
                    ],
                }
            )
        self.assertIn("elements[0].fontSize", ctx.exception.message_dict)


class WrapTextTests(SimpleTestCase):
    def test_wraps_on_word_boundaries(self):
        self.assertEqual(wrap_text("SECURITY GUARD", 3, len), ["SECURITY", "GUARD"])

    def test_keeps_words_that_fit_together(self):
        self.assertEqual(wrap_text("a b c", 3, len), ["a b", "c"])

    def test_empty_text_has_no_lines(self):
        self.assertEqual(wrap_text("", 10, len), [])

    def test_lines_fit_unless_they_hold_a_single_word(self):
        text = "Senior Security Supervisor North Zone Operations extraordinarily-long-word ok"
        lines = wrap_text(text, 16, len)
        self.assertEqual(" ".join(lines).split(" "), text.split(" "))
        self.assertGreater(len(lines), 3)
        for line in lines:
            if " " in line:
                self.assertLessEqual(len(line), 16, line)
        self.assertIn("extraordinarily-long-word", lines)

    def test_line_breaks_start_new_lines(self):
        self.assertEqual(wrap_text("Gate 3\nNorth Wing", 20, len), ["Gate 3", "North Wing"])
        self.assertEqual(wrap_text("A\r\n\nB", 20, len), ["A", "", "B"])
        self.assertEqual(wrap_text("Trailing\n", 20, len), ["Trailing"])


class InteractiveRenderTests(SimpleTestCase):
    def test_nodes_follow_element_order(self):
        template = get_template("classic-professional")
        card = render_interactive(
            template,
            _context(photo_url="https://example.com/p.png"),
        )
        rendered_ids = [node.element_id for node in card.nodes]
        expected_ids = [
            element.id
            for element in template.elements
            if element.id != "logo"
        ]
        self.assertEqual(rendered_ids, expected_ids)

    def test_text_is_substituted_and_positioned_in_percent(self):
        card = render_interactive(get_template("classic-professional"), _context())
        name = next(node for node in card.nodes if node.element_id == "name")
        self.assertEqual(name.text, "John Doe")
        self.assertTrue(name.style["left"].endswith("%"))
        self.assertEqual(name.style["font-weight"], "bold")

    def test_missing_photo_produces_no_image(self):
        card = render_interactive(get_template("classic-professional"), _context(photo_url=None))
        image_ids = [node.element_id for node in card.nodes if node.tag == "img"]
        self.assertNotIn("photo", image_ids)
        self.assertNotIn("logo", image_ids)

    def test_qrcode_encodes_verification_url(self):
        card = render_interactive(
            get_template("classic-professional"),
            _context(employee_id="SF-0042"),
            verification_base_url="https://example.com",
        )
        qr_node = next(node for node in card.nodes if node.element_id == "qr")
        code = qr_node.children[0]
        self.assertEqual(code.attrs["data-value"], "https://example.com/verify/SF-0042")
        self.assertTrue(code.attrs["src"].startswith("data:image/svg+xml;base64,"))

    def test_unknown_elements_are_skipped(self):
        template = CardTemplate(
            id="mixed",
            name="Mixed",
            width=3,
            height=2,
            elements=(
                RectangleElement("bg", 0, 0, 3, 2, background_color="#eeeeee"),
                UnknownElement("star", 1, 1, type_name="hexagon"),
                TextElement("label", 0.1, 0.1, 2, 0.3, text="Hello"),
            ),
        )
        card = render_interactive(template, _context())
        self.assertEqual([node.element_id for node in card.nodes], ["bg", "label"])

    def test_circle_without_box_is_sized_from_radius(self):
        template = CardTemplate(
            id="dot",
            name="Dot",
            width=4,
            height=2,
            elements=(CircleElement("dot", 1, 0.5, radius=0.5, background_color="#ff0000"),),
        )
        node = render_interactive(template, _context()).nodes[0]
        self.assertEqual(node.style["width"], "25%")
        self.assertEqual(node.style["height"], "50%")
        self.assertEqual(node.style["border-radius"], "50%")

    def test_multiline_values_keep_their_line_breaks(self):
        template = CardTemplate(
            id="loc",
            name="Location",
            width=3,
            height=2,
            elements=(TextElement("loc", 0.1, 0.1, 2.5, 0.8, text="{{location_name}}"),),
        )
        node = render_interactive(template, _context(location_name="Gate 3\nNorth Wing")).nodes[0]
        self.assertEqual(node.text, "Gate 3\nNorth Wing")
        self.assertEqual(node.style["white-space"], "pre-line")

    def test_html_escapes_substituted_values(self):
        card = render_interactive(get_template("classic-professional"), _context(name="<b>Eve</b>"))
        html = card.to_html()
        self.assertIn("&lt;b&gt;Eve&lt;/b&gt;", html)
        self.assertNotIn("<b>Eve</b>", html)


class RasterRenderTests(SimpleTestCase):
    def setUp(self):
        self.executor = ThreadPoolExecutor(max_workers=2)

    def tearDown(self):
        self.executor.shutdown(wait=True)

    def test_buffer_matches_card_size_at_dpi(self):
        card = render_to_buffer(
            get_template("classic-professional"),
            _context(),
            dpi=96,
            image_loader=_solid_loader(),
            executor=self.executor,
        )
        self.assertEqual(card.size, (324, 204))
        self.assertTrue(card.wait(timeout=5))

    def test_later_elements_paint_over_earlier_ones(self):
        template = CardTemplate(
            id="stack",
            name="Stack",
            width=2,
            height=1,
            elements=(
                RectangleElement("under", 0, 0, 1, 1, background_color="#ff0000"),
                RectangleElement("over", 0.5, 0, 1, 1, background_color="#0000ff"),
            ),
        )
        card = render_to_buffer(template, _context(), dpi=96, executor=self.executor)
        self.assertEqual(card.image.getpixel((20, 48)), RED)
        self.assertEqual(card.image.getpixel((80, 48)), (0, 0, 255, 255))

    def test_long_words_wrap_onto_separate_lines(self):
        template = CardTemplate(
            id="wrap",
            name="Wrap",
            width=2,
            height=1,
            elements=(TextElement("title", 0.1, 0.1, 0.3, 0.8, text="SECURITY GUARD"),),
        )
        card = render_to_buffer(template, _context(), dpi=96, executor=self.executor)
        lines = [line for line in card.text_lines if line.element_id == "title"]
        self.assertGreaterEqual(len(lines), 2)
        self.assertEqual([line.text for line in lines], ["SECURITY", "GUARD"])
        self.assertGreater(lines[1].y, lines[0].y)

    def test_multiline_text_is_drawn_line_by_line(self):
        template = CardTemplate(
            id="loc",
            name="Location",
            width=3,
            height=2,
            elements=(TextElement("loc", 0.1, 0.1, 2.5, 1.5, text="{{location_name}}"),),
        )
        card = render_to_buffer(
            template,
            _context(location_name="Gate 3\nNorth Wing"),
            dpi=96,
            executor=self.executor,
        )
        lines = [line for line in card.text_lines if line.element_id == "loc"]
        self.assertEqual([line.text for line in lines], ["Gate 3", "North Wing"])
        self.assertGreater(lines[1].y, lines[0].y)

    def test_wrapped_lines_stay_within_the_box(self):
        template = CardTemplate(
            id="wrap-many",
            name="Wrap many",
            width=3,
            height=2,
            elements=(
                TextElement(
                    "title", 0.1, 0.1, 1.2, 1.5,
                    text="Senior Security Supervisor for the North Zone Operations",
                ),
            ),
        )
        card = render_to_buffer(template, _context(), dpi=96, executor=self.executor)
        lines = [line for line in card.text_lines if line.element_id == "title"]
        self.assertGreater(len(lines), 2)
        for line in lines:
            if " " in line.text:
                self.assertLessEqual(line.width, line.max_width, line.text)

    def test_pixel_limit_rejects_oversized_buffers(self):
        target = RasterTarget(dpi=1200, executor=self.executor, max_pixels=1_000_000)
        with self.assertRaises(CardRenderError):
            target.render(get_template("classic-professional"), _context())

    def test_image_is_composited_after_load(self):
        loader = _solid_loader()
        card = render_to_buffer(
            _photo_template(),
            _context(photo_url="https://example.com/p.png"),
            dpi=96,
            image_loader=loader,
            executor=self.executor,
        )
        self.assertTrue(card.wait(timeout=5))
        self.assertEqual(loader.calls, ["https://example.com/p.png"])
        self.assertEqual(card.image.getpixel((96, 96)), RED)

    def test_missing_photo_issues_no_load(self):
        loader = _solid_loader()
        card = render_to_buffer(
            get_template("classic-professional"),
            _context(photo_url=None),
            dpi=96,
            image_loader=loader,
            executor=self.executor,
        )
        self.assertEqual(card.pending, [])
        self.assertEqual(loader.calls, [])

    def test_failed_image_load_leaves_card_intact(self):
        def failing_loader(source):
            raise ImageLoadError("unreachable")

        card = render_to_buffer(
            _photo_template(),
            _context(photo_url="https://example.com/p.png"),
            dpi=96,
            image_loader=failing_loader,
            executor=self.executor,
        )
        self.assertTrue(card.wait(timeout=5))
        self.assertIs(card.pending[0].result(), False)
        self.assertEqual(card.image.getpixel((96, 96)), WHITE)

    def test_stale_image_load_is_discarded(self):
        release = threading.Event()
        started = threading.Event()

        def blocking_loader(source):
            started.set()
            release.wait(timeout=5)
            return Image.new("RGBA", (10, 10), RED)

        target = RasterTarget(dpi=96, image_loader=blocking_loader, executor=self.executor)
        first = target.render(_photo_template(), _context(photo_url="https://example.com/p.png"))
        self.assertTrue(started.wait(timeout=5))
        second = target.render(_photo_template(source=""), _context())
        self.assertEqual(target.generation, first.generation + 1)

        release.set()
        self.assertTrue(first.wait(timeout=5))
        self.assertIs(first.pending[0].result(), False)
        self.assertEqual(second.image.getpixel((96, 96)), WHITE)
        self.assertEqual(first.image.getpixel((96, 96)), WHITE)

    def test_load_finishing_after_timeout_is_dropped(self):
        release = threading.Event()

        def slow_loader(source):
            release.wait(timeout=5)
            return Image.new("RGBA", (10, 10), RED)

        card = render_to_buffer(
            _photo_template(),
            _context(photo_url="https://example.com/p.png"),
            dpi=96,
            image_loader=slow_loader,
            executor=self.executor,
        )
        self.assertFalse(card.wait(timeout=0.05))
        self.assertTrue(card.closed)
        png = card.to_png()

        release.set()
        self.assertIs(card.pending[0].result(timeout=5), False)
        self.assertEqual(card.image.getpixel((96, 96)), WHITE)
        self.assertEqual(card.to_png(), png)

    def test_qrcode_is_drawn(self):
        template = CardTemplate(
            id="qr",
            name="QR",
            width=2,
            height=1,
            elements=(QRCodeElement("qr", 0.25, 0.25, 0.5, 0.5),),
        )
        card = render_to_buffer(template, _context(), dpi=96, executor=self.executor)
        # Top-left finder pattern module is always dark.
        self.assertEqual(card.image.getpixel((25, 25)), (0, 0, 0, 255))


class FailingTarget(InteractiveTarget):
    def begin(self):
        if self.context.employee.employee_id == "SF-0002":
            raise CardRenderError("broken record")
        super().begin()


class PrintComposerTests(SimpleTestCase):
    def test_batch_cards_match_individual_renders(self):
        template = get_template("classic-professional")
        contexts = [_context(employee_id="SF-0001"), _context(employee_id="SF-0003", name="Asha Rao")]
        result = render_batch(template, contexts)
        self.assertEqual(result.failures, [])
        for context, card in zip(contexts, result.cards):
            self.assertEqual(card.to_html(), render_interactive(template, context).to_html())

    def test_batch_continues_after_failure(self):
        template = get_template("classic-professional")
        contexts = [
            _context(employee_id="SF-0001"),
            _context(employee_id="SF-0002"),
            _context(employee_id="SF-0003"),
        ]
        result = render_batch(template, contexts, target_factory=FailingTarget)
        self.assertEqual(len(result.cards), 2)
        self.assertEqual(len(result.failures), 1)
        self.assertEqual(result.failures[0].employee_id, "SF-0002")
        self.assertEqual(result.failures[0].detail, "broken record")

    def test_document_has_page_size_and_one_card_per_page(self):
        template = get_template("classic-professional")
        cards = render_batch(template, [_context(), _context(employee_id="SF-0002")]).cards
        html = compose_print_document(cards, margin_in=0.25)
        self.assertIn("@page { size: 3.875in 2.625in; margin: 0.25in; }", html)
        self.assertIn("break-inside:avoid", html)
        self.assertEqual(html.count('class="print-card"'), 2)

    def test_mixed_card_sizes_are_rejected(self):
        wide = render_interactive(get_template("classic-professional"), _context())
        small = render_interactive(_photo_template(), _context())
        with self.assertRaises(CardRenderError):
            compose_print_document([wide, small])

    def test_empty_batch_is_rejected(self):
        with self.assertRaises(CardRenderError):
            compose_print_document([])

    def test_raster_sheets_add_margin_around_card(self):
        card = render_to_buffer(get_template("classic-professional"), _context(), dpi=96)
        pages = compose_print_sheets([card], margin_in=0.25)
        self.assertEqual(len(pages), 1)
        self.assertEqual(pages[0].size, (324 + 48, 204 + 48))


class ImageLoaderTests(SimpleTestCase):
    def test_decodes_data_uri(self):
        buffer = BytesIO()
        Image.new("RGB", (4, 3), (255, 0, 0)).save(buffer, format="PNG")
        source = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
        image = ImageLoader()(source)
        self.assertEqual(image.mode, "RGBA")
        self.assertEqual(image.size, (4, 3))
        self.assertEqual(image.getpixel((0, 0)), RED)

    def test_rejects_unsupported_and_undecodable_sources(self):
        loader = ImageLoader(media_url="/media/")
        with self.assertRaises(ImageLoadError):
            loader("ftp://example.com/photo.png")
        with self.assertRaises(ImageLoadError):
            loader("data:image/png;base64," + base64.b64encode(b"not an image").decode("ascii"))
