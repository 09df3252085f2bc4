"""
pdfminer.six page backend.

Replays a page's content stream with pdfminer and turns what the interpreter
does into page events. The interpreter subclass adds what pdfminer leaves
out (clip paths, ExtGState opacity, CropBox/zoom geometry); the device
subclass converts strings, paths and images into DrawChar, DrawPath and
DrawImage events.

Usage:
    >>> backend = PdfminerPageBackend(document, config, fonts)
    >>> for number, page in backend.pages():
    ...     backend.replay(page, converter.dispatch, number)
"""

import logging
import math
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from pdfminer.pdfdevice import PDFTextDevice
from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdffont import PDFFont, PDFUnicodeNotDefined
from pdfminer.pdfinterp import PDFPageInterpreter, PDFResourceManager
from pdfminer.pdfpage import PDFPage
from pdfminer.pdftypes import PDFStream, dict_value, list_value, resolve1, stream_value
from pdfminer.psparser import PSLiteral, literal_name
from pdfminer.utils import apply_matrix_pt, mult_matrix

from folio.constants.pdf_keys import (
    COLOR_SPACE_COMPONENTS,
    CS_ICC_BASED,
    CS_INDEXED,
    KEY_BITS_PER_COMPONENT,
    KEY_BITS_PER_COMPONENT_ABBR,
    KEY_COLOR_SPACE,
    KEY_COLOR_SPACE_ABBR,
    KEY_DECODE,
    KEY_DECODE_ABBR,
    KEY_EXT_GSTATE,
    KEY_FILL_OPACITY,
    KEY_HEIGHT,
    KEY_HEIGHT_ABBR,
    KEY_IMAGE_MASK,
    KEY_IMAGE_MASK_ABBR,
    KEY_LINE_WIDTH,
    KEY_N,
    KEY_STROKE_OPACITY,
    KEY_WIDTH,
    KEY_WIDTH_ABBR,
)
from folio.extractors.font_backend import PdfminerFontBackend
from folio.processors.events import (
    Color,
    DrawChar,
    DrawImage,
    DrawKind,
    DrawPath,
    ImageRef,
    PageBegin,
    PageEnd,
    PageEvent,
    RestoreState,
    SaveState,
    UpdateClip,
    UpdateColor,
    UpdateFont,
    UpdateRenderMode,
    UpdateTextSpacing,
    UpdateTransform,
)
from folio.utils.pdf_transforms import Matrix, Rect, path_bounds

if TYPE_CHECKING:
    from folio.engine.config import ConversionConfig

logger = logging.getLogger(__name__)

Emit = Callable[[PageEvent], None]

UNIT_BBOX = (0, 0, 1, 1)
IDENTITY = (1, 0, 0, 1, 0, 0)


def _name(value: Any) -> Optional[str]:
    value = resolve1(value)
    if isinstance(value, PSLiteral):
        return literal_name(value)
    if isinstance(value, bytes):
        return value.decode('latin-1', errors='replace')
    if isinstance(value, str):
        return value
    return None


def _get(stream: PDFStream, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in stream.attrs:
            return resolve1(stream.attrs[key])
    return default


def pdf_color(value: Any) -> Color:
    """Gray, RGB or CMYK operands to a Color; anything else (patterns) is black."""
    if value is None:
        return Color.BLACK
    if isinstance(value, (int, float)):
        return Color.from_gray(float(value))
    if isinstance(value, (list, tuple)):
        components = [float(v) for v in value if isinstance(v, (int, float))]
        if len(components) == 1:
            return Color.from_gray(components[0])
        if len(components) == 3:
            return Color.from_floats(*components)
        if len(components) == 4:
            return Color.from_cmyk(*components)
    return Color.BLACK


def page_box(page: PDFPage, use_cropbox: bool = True) -> Tuple[float, float, float, float]:
    box = page.cropbox if use_cropbox and page.cropbox else page.mediabox
    x0, y0, x1, y1 = (float(v) for v in box)
    return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)


def page_ctm(box: Sequence[float], rotate: int, zoom: float = 1.0) -> Tuple[float, ...]:
    """Base CTM mapping the page box to output space with the origin at the bottom-left."""
    x0, y0, x1, y1 = box
    rotate = rotate % 360
    if rotate == 90:
        ctm = (0, -1, 1, 0, -y0, x1)
    elif rotate == 180:
        ctm = (-1, 0, 0, -1, x1, y1)
    elif rotate == 270:
        ctm = (0, 1, -1, 0, y1, -x0)
    else:
        ctm = (1, 0, 0, 1, -x0, -y0)
    return tuple(mult_matrix(ctm, (zoom, 0, 0, zoom, 0, 0)))


class PageEventDevice(PDFTextDevice):
    """
    pdfminer device emitting page events.

    Text state is sent before every string; the tracker ignores values
    that did not change, so nothing is cached here across save/restore.
    """

    def __init__(self, rsrcmgr: PDFResourceManager, emit: Emit, fonts: PdfminerFontBackend,
                 config: 'ConversionConfig', number: int = 1):
        super().__init__(rsrcmgr)
        self.emit = emit
        self.fonts = fonts
        self.config = config
        self.number = number
        self.interpreter: Optional['PageEventInterpreter'] = None
        self._figures: List[bool] = []
        self.chars = 0
        self.paths = 0
        self.images = 0

    # --- Page ---

    def begin_page(self, page: PDFPage, ctm) -> None:
        box = page_box(page, self.config.use_cropbox)
        rect = Rect(*box).transform(Matrix.from_sequence(ctm))
        self.emit(PageBegin(rect.width, rect.height, self.number))

    def end_page(self, page: PDFPage) -> None:
        self.emit(PageEnd())
        logger.debug(f"Page {self.number}: {self.chars} chars, {self.paths} paths, {self.images} images")

    # --- Graphics state ---

    def save_state(self) -> None:
        self.emit(SaveState())

    def restore_state(self) -> None:
        self.emit(RestoreState())

    def clip(self, rect: Optional[Rect]) -> None:
        if rect is not None:
            self.emit(UpdateClip(rect))

    def begin_figure(self, name, bbox, matrix) -> None:
        # Images arrive as a unit figure; forms clip to their BBox
        is_form = tuple(bbox) != UNIT_BBOX or tuple(matrix) != IDENTITY
        self._figures.append(is_form)
        if is_form:
            self.save_state()
            form_matrix = Matrix.from_sequence(mult_matrix(tuple(matrix), self.ctm))
            self.clip(Rect.from_points([(bbox[0], bbox[1]), (bbox[2], bbox[3])]).transform(form_matrix))

    def end_figure(self, name) -> None:
        if self._figures and self._figures.pop():
            self.restore_state()

    # --- Paths ---

    def _opacity(self, stroke: bool) -> float:
        if self.interpreter is None:
            return 1.0
        return self.interpreter.stroke_alpha if stroke else self.interpreter.fill_alpha

    def _line_width(self, graphicstate) -> float:
        width = float(getattr(graphicstate, "linewidth", 1.0) or 0.0)
        if width <= 0:
            # Zero-width lines are drawn one device pixel wide
            return 1.0
        return width * math.sqrt(abs(Matrix.from_sequence(self.ctm).determinant))

    def paint_path(self, graphicstate, stroke: bool, fill: bool, evenodd: bool, path) -> None:
        points = []
        for segment in path:
            coords = [float(v) for v in segment[1:]]
            points.extend(zip(coords[0::2], coords[1::2]))
        rect = path_bounds(points, Matrix.from_sequence(self.ctm))
        if rect is None or not rect.is_finite():
            return

        self.paths += 1
        if fill:
            self.emit(DrawPath(
                kind=DrawKind.FILL,
                rect=rect,
                opacity=self._opacity(False),
                color=pdf_color(graphicstate.ncolor),
            ))
        if stroke:
            self.emit(DrawPath(
                kind=DrawKind.STROKE,
                rect=rect,
                opacity=self._opacity(True),
                color=pdf_color(graphicstate.scolor),
                line_width=self._line_width(graphicstate),
            ))

    # --- Images ---

    def _color_space(self, stream: PDFStream) -> Tuple[str, int, Optional[bytes], int]:
        """Color space name, components, palette and palette components."""
        spec = _get(stream, KEY_COLOR_SPACE, KEY_COLOR_SPACE_ABBR)
        if spec is None:
            return "DeviceGray", 1, None, 3
        name = _name(spec)
        if name is not None:
            return name, COLOR_SPACE_COMPONENTS.get(name, 3), None, 3

        spec = list_value(spec)
        if not spec:
            return "DeviceRGB", 3, None, 3
        family = _name(spec[0]) or "DeviceRGB"
        if family == CS_ICC_BASED and len(spec) > 1:
            components = resolve1(stream_value(spec[1]).get(KEY_N, 3))
            return family, int(components), None, 3
        if family == CS_INDEXED and len(spec) > 3:
            base = resolve1(spec[1])
            base_name = _name(base)
            if base_name is None and isinstance(base, list) and base:
                base_name = _name(base[0])
            base_components = COLOR_SPACE_COMPONENTS.get(base_name, 3)
            if base_name == CS_ICC_BASED and isinstance(base, list) and len(base) > 1:
                base_components = int(resolve1(stream_value(base[1]).get(KEY_N, 3)))
            lookup = resolve1(spec[3])
            if isinstance(lookup, PDFStream):
                lookup = lookup.get_data()
            elif isinstance(lookup, str):
                lookup = lookup.encode('latin-1')
            return family, 1, bytes(lookup or b""), base_components
        return family, COLOR_SPACE_COMPONENTS.get(family, 1), None, 3

    def image_ref(self, name: str, stream: PDFStream) -> ImageRef:
        filters = tuple(f for f in (_name(f) for f, _ in stream.get_filters()) if f)
        is_mask = bool(_get(stream, KEY_IMAGE_MASK, KEY_IMAGE_MASK_ABBR, default=False))
        raw = stream.get_rawdata()
        raw_length = len(raw) if raw is not None else int(resolve1(stream.attrs.get('Length', 0)) or 0)
        data = stream.get_data() or b""

        if is_mask:
            color_space, components, palette, palette_components = "DeviceGray", 1, None, 3
            bits = 1
        else:
            color_space, components, palette, palette_components = self._color_space(stream)
            bits = int(_get(stream, KEY_BITS_PER_COMPONENT, KEY_BITS_PER_COMPONENT_ABBR, default=8) or 8)

        return ImageRef(
            name=str(name),
            width=int(_get(stream, KEY_WIDTH, KEY_WIDTH_ABBR, default=0) or 0),
            height=int(_get(stream, KEY_HEIGHT, KEY_HEIGHT_ABBR, default=0) or 0),
            filters=filters,
            color_space=color_space,
            components=components,
            bits_per_component=bits,
            has_remap=palette is not None or _get(stream, KEY_DECODE, KEY_DECODE_ABBR) is not None,
            is_mask=is_mask,
            data=data,
            palette=palette,
            palette_components=palette_components,
            raw_length=raw_length,
        )

    def render_image(self, name, stream: PDFStream) -> None:
        rect = Rect(0.0, 0.0, 1.0, 1.0).transform(Matrix.from_sequence(self.ctm))
        try:
            image = self.image_ref(_name(name) or str(name), stream)
        except Exception as e:
            logger.warning(f"Could not read image {name}: {e}")
            return
        self.images += 1
        self.emit(DrawImage(rect=rect, image=image, opacity=self._opacity(False)))

    # --- Text ---

    def render_string(self, textstate, seq, ncs, graphicstate) -> None:
        font = textstate.font
        if font is None:
            logger.debug("Text shown without a font, skipping")
            return

        scaling = textstate.scaling * 0.01
        a, b, c, d, e, f = mult_matrix(textstate.matrix, self.ctm)
        word_space = 0.0 if font.is_multibyte() else textstate.wordspace
        self.emit(UpdateFont(self.fonts.register(font), textstate.fontsize))
        self.emit(UpdateColor(pdf_color(graphicstate.ncolor), pdf_color(graphicstate.scolor)))
        self.emit(UpdateTextSpacing(textstate.charspace, word_space))
        self.emit(UpdateRenderMode(int(textstate.render or 0)))
        # Horizontal scaling lives in the transform; advances stay unscaled
        self.emit(UpdateTransform(Matrix(a * scaling, b * scaling, c, d, e, f)))
        super().render_string(textstate, seq, ncs, graphicstate)

    def render_char(self, matrix, font: PDFFont, fontsize: float, scaling: float, rise: float,
                    cid: int, ncs, graphicstate) -> float:
        try:
            text = font.to_unichr(cid)
        except PDFUnicodeNotDefined:
            text = ""
        width = font.char_width(cid) * fontsize
        origin = apply_matrix_pt(matrix, (0, rise))
        self.chars += 1
        self.emit(DrawChar(
            code=cid,
            text=text,
            position=origin,
            advance=0.0 if font.is_vertical() else width,
        ))
        return width * scaling


class PageEventInterpreter(PDFPageInterpreter):
    """
    Interpreter with clipping, ExtGState opacity and page geometry.

    pdfminer treats ``W``/``W*`` and ``gs`` as no-ops; here the clip path
    bounds become UpdateClip events and ``ca``/``CA``/``LW`` are applied.
    Opacity is part of the saved state so it follows q/Q.
    """

    device: PageEventDevice

    def __init__(self, rsrcmgr: PDFResourceManager, device: PageEventDevice):
        super().__init__(rsrcmgr, device)
        self.fill_alpha = 1.0
        self.stroke_alpha = 1.0
        self.extgstates: Dict[str, Dict[str, Any]] = {}
        self._inherited: Optional[tuple] = None

    def dup(self) -> 'PageEventInterpreter':
        interpreter = self.__class__(self.rsrcmgr, self.device)
        # Forms start from the invoking state's paint parameters
        interpreter._inherited = (self.graphicstate.copy(), self.fill_alpha, self.stroke_alpha)
        return interpreter

    def init_resources(self, resources) -> None:
        super().init_resources(resources)
        self.extgstates = {}
        if not resources:
            return
        for name, spec in dict_value(dict_value(resources).get(KEY_EXT_GSTATE, {})).items():
            self.extgstates[name] = dict_value(spec)

    def init_state(self, ctm) -> None:
        super().init_state(ctm)
        self.device.interpreter = self
        if self._inherited is not None:
            graphicstate, self.fill_alpha, self.stroke_alpha = self._inherited
            self.graphicstate = graphicstate.copy()
        else:
            self.fill_alpha = 1.0
            self.stroke_alpha = 1.0

    def get_current_state(self):
        return super().get_current_state() + ((self.fill_alpha, self.stroke_alpha),)

    def set_current_state(self, state) -> None:
        ctm, textstate, graphicstate, alpha = state
        super().set_current_state((ctm, textstate, graphicstate))
        self.fill_alpha, self.stroke_alpha = alpha

    def do_q(self) -> None:
        super().do_q()
        self.device.save_state()

    def do_Q(self) -> None:
        if not self.gstack:
            logger.debug("Unbalanced Q operator, ignoring")
            return
        super().do_Q()
        self.device.restore_state()

    def _clip_current_path(self) -> None:
        points = []
        for segment in self.curpath:
            coords = [float(v) for v in segment[1:]]
            points.extend(zip(coords[0::2], coords[1::2]))
        self.device.clip(path_bounds(points, Matrix.from_sequence(self.ctm)))

    def do_W(self) -> None:
        self._clip_current_path()

    def do_W_a(self) -> None:
        self._clip_current_path()

    def do_gs(self, name) -> None:
        spec = self.extgstates.get(literal_name(name)) if isinstance(name, PSLiteral) else None
        if spec is None:
            logger.debug(f"Unknown ExtGState {name}")
            return
        if KEY_FILL_OPACITY in spec:
            self.fill_alpha = float(resolve1(spec[KEY_FILL_OPACITY]))
        if KEY_STROKE_OPACITY in spec:
            self.stroke_alpha = float(resolve1(spec[KEY_STROKE_OPACITY]))
        if KEY_LINE_WIDTH in spec:
            self.graphicstate.linewidth = float(resolve1(spec[KEY_LINE_WIDTH]))

    def do_Do(self, xobjid) -> None:
        super().do_Do(xobjid)
        # A form leaves its own CTM and interpreter on the device
        self.device.set_ctm(self.ctm)
        self.device.interpreter = self

    def process_page(self, page: PDFPage) -> None:
        config = self.device.config
        box = page_box(page, config.use_cropbox)
        ctm = page_ctm(box, int(page.rotate or 0), config.zoom)
        self.device.begin_page(page, ctm)
        self.render_contents(page.resources, page.contents, ctm=ctm)
        self.device.end_page(page)


class PdfminerPageBackend:
    """
    Replays the pages of one pdfminer document.

    One resource manager is shared by all pages so fonts keep their
    identity, and with it their FontRef key, across the document.
    """

    def __init__(self, document: PDFDocument, config: 'ConversionConfig',
                 fonts: Optional[PdfminerFontBackend] = None):
        self.document = document
        self.config = config
        self.fonts = fonts or PdfminerFontBackend()
        self.rsrcmgr = PDFResourceManager(caching=True)

    def pages(self) -> Iterator[Tuple[int, PDFPage]]:
        """Yield (1-based number, page) for every page of the document."""
        for index, page in enumerate(PDFPage.create_pages(self.document)):
            yield index + 1, page

    def replay(self, page: PDFPage, emit: Emit, number: int = 1) -> None:
        device = PageEventDevice(self.rsrcmgr, emit, self.fonts, self.config, number)
        interpreter = PageEventInterpreter(self.rsrcmgr, device)
        device.interpreter = interpreter
        interpreter.process_page(page)
