#!/usr/bin/env python3
"""Word export of a finished proposal.

Renders a cover block (title, basic-information table, date, agency) and
every non-empty narrative section under its numbered label. Section text
is the light markdown the generator writes:

    ## heading         → Heading 2
    ### heading        → Heading 3
    - item / * item    → bullet paragraph
    **bold**           → bold run
    blank line         → empty paragraph

Usage:
    data = build_proposal_docx(metadata, sections)
    Path(export_filename(metadata)).write_bytes(data)
"""

import io
import logging
import re
from datetime import date
from typing import Dict, List, Optional, Tuple

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor

from grantkit.drafting.sections import SECTION_KEYS, SECTION_LABELS, ProjectMetadata

logger = logging.getLogger("grantkit.production.exporter")

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

TITLE = "사  업  계  획  서"
SUBTITLE = "사회복지공동모금회 배분사업 신청"
FONT_NAME = "Malgun Gothic"

NAVY = RGBColor(0x00, 0x33, 0x66)
INK = RGBColor(0x1A, 0x1A, 0x1A)
GREY = RGBColor(0x55, 0x55, 0x55)

_BOLD_RE = re.compile(r"(\*\*[^*]+\*\*)")


def _configure_styles(doc) -> None:
    """Malgun Gothic body text, navy headings, 1 inch margins."""
    style = doc.styles["Normal"]
    style.font.name = FONT_NAME
    style.font.size = Pt(11)
    # East-Asian glyphs take the font from w:eastAsia
    rpr = style.element.get_or_add_rPr()
    fonts = rpr.find(qn("w:rFonts"))
    if fonts is None:
        fonts = OxmlElement("w:rFonts")
        rpr.append(fonts)
    fonts.set(qn("w:eastAsia"), FONT_NAME)
    style.paragraph_format.space_after = Pt(4)

    for level, size in [(2, 12), (3, 11)]:
        heading = doc.styles[f"Heading {level}"]
        heading.font.name = FONT_NAME
        heading.font.size = Pt(size)
        heading.font.bold = True
        heading.font.color.rgb = NAVY
        heading.paragraph_format.space_before = Pt(10)
        heading.paragraph_format.space_after = Pt(4)

    for section in doc.sections:
        section.top_margin = Inches(1)
        section.bottom_margin = Inches(1)
        section.left_margin = Inches(1)
        section.right_margin = Inches(1)


def _shade(element, fill: str) -> None:
    """Solid background fill on a paragraph or table cell."""
    props = element.get_or_add_pPr() if element.tag == qn("w:p") else element.get_or_add_tcPr()
    shd = OxmlElement("w:shd")
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), fill)
    props.append(shd)


def _add_inline(paragraph, text: str, size: int = 11) -> None:
    for part in _BOLD_RE.split(text):
        if not part:
            continue
        if part.startswith("**") and part.endswith("**"):
            run = paragraph.add_run(part[2:-2])
            run.bold = True
        else:
            run = paragraph.add_run(part)
        run.font.size = Pt(size)
        run.font.color.rgb = INK


def render_markdown(doc, content: str) -> int:
    """Append ``content`` to ``doc``; returns the number of paragraphs added."""
    added = 0
    for line in content.split("\n"):
        if line.startswith("## "):
            doc.add_paragraph(line[3:], style="Heading 2")
        elif line.startswith("### "):
            doc.add_paragraph(line[4:], style="Heading 3")
        elif line.startswith("- ") or line.startswith("* "):
            para = doc.add_paragraph()
            para.paragraph_format.left_indent = Inches(0.25)
            para.paragraph_format.first_line_indent = Inches(-0.12)
            bullet = para.add_run("• ")
            bullet.font.color.rgb = GREY
            _add_inline(para, line[2:])
        elif not line.strip():
            doc.add_paragraph()
        else:
            para = doc.add_paragraph()
            para.paragraph_format.left_indent = Inches(0.1)
            _add_inline(para, line)
        added += 1
    return added


def info_rows(metadata: ProjectMetadata) -> List[Tuple[str, str]]:
    """Label/value rows of the cover information table."""
    budget = f"{metadata.budget_total}원" if metadata.budget_total else "(미입력)"
    target = " ".join(v for v in (metadata.target, metadata.target_count) if v)
    rows = [
        ("사  업  명", metadata.project_name or "(미입력)"),
        ("수 행 기 관", metadata.agency_name or "(미입력)"),
        ("사 업 유 형", metadata.project_type),
        ("사 업 기 간", metadata.period),
        ("신 청 금 액", budget),
        ("사 업 대 상", target or "(미입력)"),
    ]
    if metadata.key_outcome:
        rows.append(("핵심 성과목표", metadata.key_outcome))
    if metadata.region:
        rows.append(("사 업 지 역", metadata.region))
    if metadata.manager_name:
        rows.append(("담  당  자", metadata.manager_name))
    return rows


def _korean_date(today: date) -> str:
    return f"{today.year}년 {today.month}월 {today.day}일"


def build_proposal_docx(metadata: ProjectMetadata, sections: Dict[str, str],
                        today: Optional[date] = None) -> bytes:
    """Render the proposal and return the .docx bytes."""
    doc = Document()
    _configure_styles(doc)

    title = doc.add_paragraph()
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    title.paragraph_format.space_before = Pt(40)
    run = title.add_run(TITLE)
    run.bold = True
    run.font.size = Pt(24)
    run.font.color.rgb = NAVY

    subtitle = doc.add_paragraph()
    subtitle.alignment = WD_ALIGN_PARAGRAPH.CENTER
    subtitle.paragraph_format.space_after = Pt(30)
    run = subtitle.add_run(SUBTITLE)
    run.font.size = Pt(13)
    run.font.color.rgb = GREY

    rows = info_rows(metadata)
    table = doc.add_table(rows=len(rows), cols=2)
    table.style = "Table Grid"
    for row, (label, value) in zip(table.rows, rows):
        head, body = row.cells
        head.width = Inches(1.8)
        body.width = Inches(4.7)
        head.text = label
        body.text = value
        _shade(head._tc, "003366")
        for para in head.paragraphs:
            for r in para.runs:
                r.bold = True
                r.font.color.rgb = RGBColor(0xFF, 0xFF, 0xFF)
        for para in body.paragraphs:
            for r in para.runs:
                r.bold = True

    dated = doc.add_paragraph()
    dated.alignment = WD_ALIGN_PARAGRAPH.CENTER
    dated.paragraph_format.space_before = Pt(20)
    run = dated.add_run(_korean_date(today or date.today()))
    run.font.size = Pt(10)
    run.font.color.rgb = RGBColor(0x88, 0x88, 0x88)

    agency = doc.add_paragraph()
    agency.alignment = WD_ALIGN_PARAGRAPH.CENTER
    agency.paragraph_format.space_after = Pt(30)
    run = agency.add_run(metadata.agency_name)
    run.bold = True
    run.font.size = Pt(13)

    ordered = [k for k in SECTION_KEYS if k in sections]
    ordered += [k for k in sections if k not in SECTION_KEYS]
    written = 0
    for key in ordered:
        text = sections.get(key) or ""
        if not text.strip():
            continue
        heading = doc.add_paragraph()
        _shade(heading._p, "003366")
        heading.paragraph_format.space_before = Pt(14)
        heading.paragraph_format.space_after = Pt(6)
        run = heading.add_run(SECTION_LABELS.get(key, key))
        run.bold = True
        run.font.size = Pt(11)
        run.font.color.rgb = RGBColor(0xFF, 0xFF, 0xFF)
        render_markdown(doc, text)
        written += 1

    buf = io.BytesIO()
    doc.save(buf)
    logger.info("Rendered proposal for %s with %d sections",
                metadata.agency_name or "(unnamed agency)", written)
    return buf.getvalue()


def export_filename(metadata: ProjectMetadata) -> str:
    return f"{metadata.agency_name or '기관'}_사업계획서.docx"
