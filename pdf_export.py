"""
Attention record PDF export.

Lays out a single counseling session on A4 pages: coloured header band,
a metadata table, three free-text sections and a signature block. The
cursor ``y`` is measured in millimetres from the top of the page; every
block checks the space left above the bottom margin and opens a
continuation page when it would not fit. Footers carry "page X / N",
so they are stamped only after the whole document has been laid out.
"""

import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from app_logger import get_logger
from config import local_now, settings

logger = get_logger("pdf_export")

# ─── LAYOUT (mm) ───
PAGE_W = A4[0] / mm   # 210
PAGE_H = A4[1] / mm   # 297
MARGIN_L = 16
MARGIN_R = 16
MARGIN_B = 28  # leaves room for the footer
CONTENT_W = PAGE_W - MARGIN_L - MARGIN_R
CONTINUATION_TOP = 14
LINE_HEIGHT = 7

# ─── COLOURS ───
PRIMARY = HexColor('#7CD6DE')
INK = HexColor('#1E1E1E')
MUTED = HexColor('#B4B4B4')
SIGNATURE = HexColor('#84848C')
GREY_TEXT = HexColor('#646464')
GRID = HexColor('#C8C8C8')

PLACEHOLDER = "—"
WHITESPACE_RUN = re.compile(r"\s+")

SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
    "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

class PDFExportError(Exception):
    """The record cannot be rendered (e.g. an unparseable date)."""

@dataclass(frozen=True)
class AttentionSnapshot:
    """Detached copy of an attention row; exports never touch the session."""
    student_name: str
    grade: Optional[str]
    date: str
    time: Optional[str] = None
    reason: Optional[str] = None
    observations: Optional[str] = None
    recommendations: Optional[str] = None
    psychologist_name: Optional[str] = None

    @classmethod
    def from_record(cls, attention) -> "AttentionSnapshot":
        return cls(
            student_name=attention.student_name or "",
            grade=attention.grade,
            date=attention.date,
            time=attention.time,
            reason=attention.reason,
            observations=attention.observations,
            recommendations=attention.recommendations,
            psychologist_name=attention.psychologist_name,
        )

@dataclass
class RenderedDocument:
    filename: str
    content: bytes
    page_count: int
    footer_labels: List[str] = field(default_factory=list)

def export_filename(student_name: str, session_date: str) -> str:
    safe_name = WHITESPACE_RUN.sub("_", student_name or "")
    return f"Atencion_{safe_name}_{session_date}.pdf"

def format_long_date(value: str) -> str:
    """'2026-02-15' -> '15 de febrero, 2026'"""
    try:
        parsed = date.fromisoformat(value)
    except (TypeError, ValueError):
        raise PDFExportError(f"Invalid attention date: {value!r}")
    return f"{parsed.day:02d} de {SPANISH_MONTHS[parsed.month - 1]}, {parsed.year}"

def split_text_to_size(text: str, font_name: str, font_size: float, max_width: float) -> List[str]:
    """Wrap text to ``max_width`` mm using the font's glyph widths.

    Explicit newlines are kept; a word wider than a whole line is broken
    between characters.
    """
    limit = max_width * mm
    lines: List[str] = []

    def width(s: str) -> float:
        return stringWidth(s, font_name, font_size)

    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue

        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if width(candidate) <= limit:
                current = candidate
                continue

            if current:
                lines.append(current)
            while width(word) > limit:
                cut = 1
                while cut < len(word) and width(word[:cut + 1]) <= limit:
                    cut += 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        lines.append(current)

    return lines

class _DeferredFooterCanvas(canvas.Canvas):
    """Canvas that holds finished pages until save() so each footer can
    show the final page count."""

    def __init__(self, *args, footer_text: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self._footer_text = footer_text
        self._saved_page_states = []
        self.footer_labels: List[str] = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    @property
    def page_count(self) -> int:
        return len(self._saved_page_states)

    def _draw_footer(self, total: int):
        label = f"Pág. {self._pageNumber} / {total}"
        baseline = 8 * mm
        self.setFont("Helvetica", 8)
        self.setFillColor(MUTED)
        self.drawCentredString(PAGE_W / 2 * mm, baseline, self._footer_text)
        self.drawRightString((PAGE_W - MARGIN_R) * mm, baseline, label)
        self.footer_labels.append(label)

class AttentionPDF:
    def __init__(self, attention: AttentionSnapshot, generated_at: Optional[datetime] = None):
        self.attention = attention
        self.generated_at = generated_at or local_now()
        self.buffer = io.BytesIO()
        footer = (
            f"{settings.school_name} - Área de Psicología - "
            f"Generado: {self.generated_at.strftime('%d/%m/%Y, %H:%M:%S')}"
        )
        self.c = _DeferredFooterCanvas(self.buffer, pagesize=A4, footer_text=footer)
        self.c.setTitle(f"Registro de Atención Psicológica - {attention.student_name}")
        self.c.setAuthor(attention.psychologist_name or settings.school_name)
        self.y = 0.0

    # ─── primitives in top-down mm ───
    def _text(self, x: float, y: float, text: str, align: str = "left"):
        px, py = x * mm, (PAGE_H - y) * mm
        if align == "center":
            self.c.drawCentredString(px, py, text)
        elif align == "right":
            self.c.drawRightString(px, py, text)
        else:
            self.c.drawString(px, py, text)

    def _font(self, name: str, size: float, color=INK):
        self.c.setFont(name, size)
        self.c.setFillColor(color)

    # ─── pagination ───
    def new_page(self):
        self.c.showPage()
        self.y = CONTINUATION_TOP
        self._font("Helvetica-Oblique", 8, MUTED)
        self._text(PAGE_W - MARGIN_R, self.y, "Registro de Atención Psicológica — continuación", align="right")
        self.y += 8

    def check_page(self, needed: float):
        if self.y + needed > PAGE_H - MARGIN_B:
            self.new_page()

    # ─── blocks ───
    def draw_header(self):
        self.c.setFillColor(PRIMARY)
        self.c.rect(0, (PAGE_H - 40) * mm, PAGE_W * mm, 40 * mm, stroke=0, fill=1)

        self._font("Helvetica-Bold", 20, HexColor('#FFFFFF'))
        self._text(PAGE_W / 2, 17, settings.school_name.upper(), align="center")
        self._font("Helvetica", 12, HexColor('#FFFFFF'))
        self._text(PAGE_W / 2, 28, "Área de Psicología", align="center")

        self._font("Helvetica-Bold", 14)
        self._text(PAGE_W / 2, 52, "REGISTRO DE ATENCIÓN PSICOLÓGICA", align="center")
        self.y = 60

    def draw_table(
        self,
        rows: Sequence[Tuple[str, str]],
        col_widths: Tuple[float, float],
        font_size: float = 10,
        padding: float = 3
    ):
        """Two-column grid; a row that does not fit moves to the next page."""
        line_h = font_size * 1.15 / mm
        x0 = MARGIN_L
        for label, value in rows:
            label_lines = split_text_to_size(label, "Helvetica-Bold", font_size, col_widths[0] - 2 * padding)
            value_lines = split_text_to_size(value, "Helvetica", font_size, col_widths[1] - 2 * padding)
            row_h = max(len(label_lines), len(value_lines)) * line_h + 2 * padding

            self.check_page(row_h)

            self.c.setStrokeColor(GRID)
            self.c.setLineWidth(0.1 * mm)
            x = x0
            for w in col_widths:
                self.c.rect(x * mm, (PAGE_H - self.y - row_h) * mm, w * mm, row_h * mm, stroke=1, fill=0)
                x += w

            baseline = self.y + padding + font_size * 0.8 / mm
            for cells, font, cx in (
                (label_lines, "Helvetica-Bold", x0 + padding),
                (value_lines, "Helvetica", x0 + col_widths[0] + padding),
            ):
                self._font(font, font_size)
                for i, line in enumerate(cells):
                    self._text(cx, baseline + i * line_h, line)

            self.y += row_h

    def print_section(self, title: str, text: Optional[str], gap_before: float = 8):
        self.y += gap_before
        self.check_page(12)
        self._font("Helvetica-Bold", 12, PRIMARY)
        self._text(MARGIN_L, self.y, title)
        self.y += 6

        self._font("Helvetica", 11)
        for line in split_text_to_size(text or PLACEHOLDER, "Helvetica", 11, CONTENT_W):
            self.check_page(LINE_HEIGHT)
            # a page break resets the fill colour to the mini-header grey
            self._font("Helvetica", 11)
            self._text(MARGIN_L, self.y, line)
            self.y += LINE_HEIGHT

    def draw_signature(self):
        self.y += 12
        self.check_page(30)
        self.c.setStrokeColor(SIGNATURE)
        self.c.setLineWidth(0.4 * mm)
        line_y = (PAGE_H - self.y) * mm
        self.c.line((PAGE_W / 2 - 40) * mm, line_y, (PAGE_W / 2 + 40) * mm, line_y)
        self.y += 5
        self._font("Helvetica", 10, GREY_TEXT)
        self._text(PAGE_W / 2, self.y, "Firma del Profesional", align="center")
        self.y += 5
        self._text(PAGE_W / 2, self.y, self.attention.psychologist_name or "", align="center")

    def build(self) -> RenderedDocument:
        a = self.attention
        session_date = format_long_date(a.date)

        self.draw_header()
        self.draw_table(
            [
                ("Estudiante", a.student_name or PLACEHOLDER),
                ("Grado y Sección", a.grade or PLACEHOLDER),
                ("Fecha de Atención", session_date),
                ("Hora", a.time or PLACEHOLDER),
                ("Psicólogo(a)", a.psychologist_name or PLACEHOLDER),
            ],
            col_widths=(50, CONTENT_W - 50),
        )
        self.y += 4

        self.print_section("Motivo de Consulta:", a.reason, 6)
        self.print_section("Observaciones:", a.observations, 8)
        self.print_section("Recomendaciones / Plan de Acción:", a.recommendations, 8)

        self.draw_signature()

        # close the last page, then stamp every footer
        self.c.showPage()
        self.c.save()

        document = RenderedDocument(
            filename=export_filename(a.student_name, a.date),
            content=self.buffer.getvalue(),
            page_count=self.c.page_count,
            footer_labels=list(self.c.footer_labels),
        )
        logger.info("Rendered %s (%d pages)", document.filename, document.page_count)
        return document

def generate_attention_pdf(attention, generated_at: Optional[datetime] = None) -> RenderedDocument:
    """Render an attention row (or a snapshot of one) to a PDF document."""
    if not isinstance(attention, AttentionSnapshot):
        attention = AttentionSnapshot.from_record(attention)
    return AttentionPDF(attention, generated_at).build()
