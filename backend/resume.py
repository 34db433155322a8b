from __future__ import annotations

import html
import io
import re
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.pdfgen import canvas
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer

from backend import settings
from backend.auth import require_user, safe_text
from backend.db import DB_ERRORS, DB_INTEGRITY_ERRORS, db_connection, now_utc_iso
from backend.errors import InvalidInput, PersistenceFailure
from backend.llm import request_llm_completion

logger = settings.logger.getChild("resume")

ENTRY_TYPES = {"experience", "education", "project"}

PALETTE = {
    "name": colors.HexColor("#0F243A"),
    "accent": colors.HexColor("#2E6A9E"),
    "text": colors.HexColor("#1B2733"),
    "muted": colors.HexColor("#567086"),
    "line": colors.HexColor("#D7E2EA"),
}


def entries_to_markdown(entries: list[dict[str, Any]] | None, title: str) -> str:
    if not entries:
        return ""
    blocks: list[str] = []
    for entry in entries:
        start = safe_text(entry.get("start_date"))
        if entry.get("current"):
            date_range = f"{start} - Present"
        else:
            date_range = f"{start} - {safe_text(entry.get('end_date'))}"
        heading = f"### {safe_text(entry.get('title'))} @ {safe_text(entry.get('organization'))}"
        blocks.append(f"{heading}\n{date_range}\n\n{safe_text(entry.get('description'))}")
    return f"## {title}\n\n" + "\n\n".join(blocks)


def contact_markdown(name: str | None, contact: dict[str, Any] | None) -> str:
    contact = contact or {}
    parts: list[str] = []
    if safe_text(contact.get("email")):
        parts.append(f"Email: {safe_text(contact['email'])}")
    if safe_text(contact.get("mobile")):
        parts.append(f"Mobile: {safe_text(contact['mobile'])}")
    if safe_text(contact.get("linkedin")):
        parts.append(f"[LinkedIn]({safe_text(contact['linkedin'])})")
    if safe_text(contact.get("twitter")):
        parts.append(f"[Twitter]({safe_text(contact['twitter'])})")
    if not parts:
        return ""
    return f"# {safe_text(name) or 'Your Name'}\n\n" + " | ".join(parts)


def compose_resume_markdown(
    name: str | None,
    contact: dict[str, Any] | None,
    summary: str | None,
    skills: str | None,
    experience: list[dict[str, Any]] | None,
    education: list[dict[str, Any]] | None,
    projects: list[dict[str, Any]] | None,
) -> str:
    parts = [
        contact_markdown(name, contact),
        f"## Professional Summary\n\n{safe_text(summary)}" if safe_text(summary) else "",
        f"## Skills\n\n{safe_text(skills)}" if safe_text(skills) else "",
        entries_to_markdown(experience, "Work Experience"),
        entries_to_markdown(education, "Education"),
        entries_to_markdown(projects, "Projects"),
    ]
    return "\n\n".join(part for part in parts if part)


def save_resume(identity: str | None, content: str) -> dict[str, Any]:
    user = require_user(identity)
    content = (content or "").strip()
    if not content:
        raise InvalidInput("Resume content is required.")

    user_id = int(user["id"])
    timestamp = now_utc_iso()
    connection = db_connection()
    try:
        updated = connection.execute(
            "UPDATE resumes SET content = ?, updated_at = ? WHERE user_id = ?",
            (content, timestamp, user_id),
        ).rowcount
        if not updated:
            try:
                connection.execute(
                    "INSERT INTO resumes (user_id, content, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (user_id, content, timestamp, timestamp),
                )
            except DB_INTEGRITY_ERRORS:
                connection.rollback()
                connection.execute(
                    "UPDATE resumes SET content = ?, updated_at = ? WHERE user_id = ?",
                    (content, timestamp, user_id),
                )
        connection.commit()
    except DB_ERRORS as exc:
        connection.rollback()
        logger.exception("Error saving resume for user %s", user_id)
        raise PersistenceFailure("Failed to save resume: " + str(exc)) from exc
    finally:
        connection.close()
    return {"user_id": user_id, "content": content, "updated_at": timestamp}


def get_resume(identity: str | None) -> dict[str, Any] | None:
    user = require_user(identity)
    connection = db_connection()
    try:
        row = connection.execute(
            "SELECT user_id, content, created_at, updated_at FROM resumes WHERE user_id = ?",
            (int(user["id"]),),
        ).fetchone()
    finally:
        connection.close()
    if not row:
        return None
    return {
        "user_id": int(row["user_id"]),
        "content": str(row["content"]),
        "created_at": str(row["created_at"]),
        "updated_at": str(row["updated_at"]),
    }


def improve_with_ai(identity: str | None, current: str, entry_type: str) -> str:
    user = require_user(identity)
    current = safe_text(current)
    if not current:
        raise InvalidInput("Please enter a description first.")
    entry_type = safe_text(entry_type).lower()
    if entry_type not in ENTRY_TYPES:
        raise InvalidInput(f"Unknown entry type '{entry_type}'.")

    industry = safe_text(user["industry"]) or "general"
    prompt = f"""
As an expert resume writer, improve the following {entry_type} description for a {industry} professional.
Make it more impactful, quantifiable, and aligned with industry standards.
Current content: "{current}"

Requirements:
- Use action verbs.
- Include metrics and results where the original supports them; do not invent numbers.
- Highlight relevant technical skills.
- Keep it concise but detailed.
- Focus on achievements over responsibilities.
- Use industry-specific keywords.

Format the response as a single paragraph without any additional text or explanations.
"""
    improved = request_llm_completion(
        system_prompt="You improve resume entries with factual discipline and ATS-aware clarity.",
        user_prompt=prompt,
        temperature=0.3,
    )
    return improved.strip().strip('"')


def sanitize_download_name(value: str | None) -> str:
    base = re.sub(r"[^a-zA-Z0-9._-]+", "-", safe_text(value) or "resume").strip("-").lower()
    return base or "resume"


EMPHASIS_PATTERN = re.compile(r"\*\*(.+?)\*\*|\*(.+?)\*")
ITALIC_PATTERN = re.compile(r"\*(.+?)\*")


def _emphasis_to_html(match: re.Match[str]) -> str:
    bold, italic = match.groups()
    if bold is not None:
        # Italics only inside the bold span so tags always nest.
        return "<b>" + ITALIC_PATTERN.sub(r"<i>\1</i>", bold) + "</b>"
    return f"<i>{italic}</i>"


def inline_markdown_to_html(text: str) -> str:
    """Convert inline markdown to the small tag set reportlab paragraphs accept.

    Emphasis is matched in a single left-to-right pass. Markers that would
    cross an already closed span are left as literal asterisks.
    """
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"\1 (\2)", text)
    escaped = html.escape(text)
    return EMPHASIS_PATTERN.sub(_emphasis_to_html, escaped)


def build_pdf_styles() -> dict[str, ParagraphStyle]:
    sample = getSampleStyleSheet()
    return {
        "name": ParagraphStyle(
            "name",
            parent=sample["Title"],
            fontName="Helvetica-Bold",
            fontSize=24,
            leading=26,
            textColor=PALETTE["name"],
            spaceAfter=2,
        ),
        "section": ParagraphStyle(
            "section",
            parent=sample["Heading3"],
            fontName="Helvetica-Bold",
            fontSize=11.4,
            leading=14,
            textColor=PALETTE["accent"],
            spaceBefore=7,
            spaceAfter=4,
        ),
        "entry": ParagraphStyle(
            "entry",
            parent=sample["Normal"],
            fontName="Helvetica-Bold",
            fontSize=10.4,
            leading=13.4,
            textColor=PALETTE["text"],
            spaceBefore=3,
            spaceAfter=1,
        ),
        "body": ParagraphStyle(
            "body",
            parent=sample["Normal"],
            fontName="Helvetica",
            fontSize=10.0,
            leading=14.2,
            textColor=PALETTE["text"],
            spaceAfter=3,
        ),
        "bullet": ParagraphStyle(
            "bullet",
            parent=sample["Normal"],
            fontName="Helvetica",
            fontSize=10.0,
            leading=14.2,
            textColor=PALETTE["text"],
            leftIndent=14,
            bulletIndent=2,
            spaceBefore=1,
            spaceAfter=3,
        ),
    }


def draw_page_footer(pdf: canvas.Canvas, doc: SimpleDocTemplate) -> None:
    pdf.saveState()
    pdf.setStrokeColor(PALETTE["line"])
    pdf.setLineWidth(0.6)
    pdf.line(doc.leftMargin, 24, doc.leftMargin + doc.width, 24)
    pdf.setFont("Helvetica", 8)
    pdf.setFillColor(PALETTE["muted"])
    pdf.drawRightString(doc.leftMargin + doc.width, 12, f"Page {pdf.getPageNumber()}")
    pdf.restoreState()


def render_resume_pdf_bytes(name: str | None, markdown: str) -> bytes:
    styles = build_pdf_styles()
    output = io.BytesIO()
    doc = SimpleDocTemplate(
        output,
        pagesize=A4,
        leftMargin=44,
        rightMargin=44,
        topMargin=42,
        bottomMargin=34,
        title=f"{safe_text(name) or 'Resume'}",
        author="Career Coach",
    )

    story: list[Any] = []
    for raw_line in (markdown or "").replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("# "):
            story.append(Paragraph(inline_markdown_to_html(line[2:]), styles["name"]))
        elif line.startswith("## "):
            story.append(Paragraph(inline_markdown_to_html(line[3:]), styles["section"]))
            story.append(HRFlowable(width="100%", color=PALETTE["line"], thickness=0.5, spaceBefore=1, spaceAfter=4))
        elif line.startswith("### "):
            story.append(Paragraph(inline_markdown_to_html(line[4:]), styles["entry"]))
        elif re.match(r"^[-*•]\s+", line):
            bullet = re.sub(r"^[-*•]\s+", "", line)
            story.append(Paragraph(inline_markdown_to_html(bullet), styles["bullet"], bulletText="• "))
        else:
            story.append(Paragraph(inline_markdown_to_html(line), styles["body"]))

    if not story:
        story.append(Spacer(1, 12))

    doc.build(story, onFirstPage=draw_page_footer, onLaterPages=draw_page_footer)
    output.seek(0)
    return output.getvalue()
