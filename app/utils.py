import os
import re
import time
import secrets
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, KeepTogether
from reportlab.platypus.flowables import HRFlowable
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib import colors

from app.errors import NotFound, UpstreamServiceError, ValidationFailed
from app.schemas import ExportResult, MultipleChoiceQuestion, ShortAnswerQuestion, StudyMaterial

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
MIME_BY_EXT = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
EXPORT_URL_PREFIX = "/api/export/download"
UPLOAD_URL_PREFIX = "/uploads"


# ---- Uploaded files ----
def validate_image_file(content_type: Optional[str], size: int, max_bytes: int) -> None:
    if (content_type or "").lower() not in ALLOWED_IMAGE_TYPES:
        raise ValidationFailed(
            "Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed.",
            errors=[{"field": "image", "message": "Unsupported image type"}],
        )
    if size > max_bytes:
        mb = max_bytes // (1024 * 1024)
        raise ValidationFailed(
            f"File size too large. Maximum size is {mb}MB.",
            errors=[{"field": "image", "message": "File too large"}],
        )
    if size == 0:
        raise ValidationFailed("Uploaded image is empty", errors=[{"field": "image", "message": "Empty file"}])


def sanitize_filename(filename: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9.-]", "_", filename or "")
    name = re.sub(r"_+", "_", name)
    return name.strip("_")


def generate_unique_filename(original_name: str, content_type: Optional[str] = None) -> str:
    base = os.path.basename(original_name or "")
    stem, ext = os.path.splitext(base)
    ext = ext.lower()
    if ext not in MIME_BY_EXT:
        ext = {v: k for k, v in MIME_BY_EXT.items()}.get((content_type or "").lower(), ".jpg")
    stem = sanitize_filename(stem) or "image"
    return f"{stem}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


def guess_mime_type(path: str) -> str:
    return MIME_BY_EXT.get(os.path.splitext(path)[1].lower(), "image/jpeg")


def save_upload(upload_dir: str, filename: str, data: bytes) -> str:
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, filename)
    with open(path, "wb") as f:
        f.write(data)
    return path


def upload_url(filename: str) -> str:
    return f"{UPLOAD_URL_PREFIX}/{filename}"


def upload_path_from_url(upload_dir: str, image_url: str) -> str:
    return os.path.join(upload_dir, os.path.basename(image_url or ""))


def delete_file(path: str) -> bool:
    """Best-effort delete; failures are logged, never raised."""
    try:
        if path and os.path.exists(path):
            os.remove(path)
            logger.info("Deleted file: %s", path)
            return True
        return False
    except OSError as e:
        logger.error("Error deleting file %s: %s", path, e)
        return False


def truncate_text(text: str, max_length: int = 100) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."


def is_safe_filename(filename: str) -> bool:
    return bool(filename) and not any(bad in filename for bad in ("..", "/", "\\"))


# ---- PDF rendering ----
def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("StudyTitle", parent=base["Heading1"], fontSize=20, spaceAfter=10, textColor=colors.darkblue),
        "heading": ParagraphStyle("StudyHeading", parent=base["Heading2"], fontSize=14, spaceBefore=14, spaceAfter=8, textColor=colors.darkblue),
        "normal": ParagraphStyle("StudyNormal", parent=base["Normal"], fontSize=11, leading=15, spaceAfter=4),
        "option": ParagraphStyle("StudyOption", parent=base["Normal"], fontSize=11, leading=14, leftIndent=18),
        "answer": ParagraphStyle("StudyAnswer", parent=base["Normal"], fontSize=11, leading=14, leftIndent=18, spaceAfter=8),
    }


def _para(text: str, style) -> Paragraph:
    # Paragraph understands a small XML dialect; user text must be escaped
    return Paragraph(escape(text or "").replace("\n", "<br/>"), style)


def option_letter(index: int) -> str:
    return chr(65 + index)


def build_study_material_story(material: StudyMaterial, title: str) -> list:
    s = _styles()
    story = [_para(title, s["title"]), HRFlowable(width="100%", thickness=0.5, color=colors.grey), Spacer(1, 12)]

    if material.summary:
        story += [_para("Summary", s["heading"]), _para(material.summary, s["normal"])]
    if material.explanation:
        story += [_para("Explanation", s["heading"]), _para(material.explanation, s["normal"])]
    if material.key_topics:
        story += [_para("Key Topics", s["heading"]), _para(", ".join(material.key_topics), s["normal"])]

    if material.quiz_questions:
        story.append(_para("Quiz Questions", s["heading"]))
        for i, q in enumerate(material.quiz_questions, 1):
            block = [_para(f"{i}. {q.question}", s["normal"])]
            if isinstance(q, MultipleChoiceQuestion):
                for idx, option in enumerate(q.options):
                    line = escape(f"{option_letter(idx)}. {option}")
                    block.append(Paragraph(f"<b>{line}</b>" if idx == q.correct else line, s["option"]))
                block.append(Paragraph(f"<b>Answer: {option_letter(q.correct)}</b>", s["answer"]))
            elif isinstance(q, ShortAnswerQuestion):
                block.append(Paragraph(f"<b>Answer:</b> {escape(q.answer)}", s["answer"]))
            story.append(KeepTogether(block))

    if material.flashcards:
        story.append(_para("Flashcards", s["heading"]))
        for i, card in enumerate(material.flashcards, 1):
            story.append(KeepTogether([
                Paragraph(f"<b>Card {i}:</b>", s["normal"]),
                Paragraph(f"<b>Front:</b> {escape(card.front)}", s["option"]),
                Paragraph(f"<b>Back:</b> {escape(card.back)}", s["answer"]),
            ]))
    return story


def _page_footer(canvas, doc):
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    canvas.drawRightString(doc.pagesize[0] - 56, 30, f"Page {doc.page}")
    canvas.restoreState()


class StudyMaterialExporter:
    """Document-render collaborator: writes study-material PDFs to the export directory."""

    def __init__(self, export_dir: str, retention_hours: float = 24.0):
        self.export_dir = export_dir
        self.retention_hours = retention_hours
        os.makedirs(self.export_dir, exist_ok=True)

    @staticmethod
    def new_filename() -> str:
        return f"study-material-{int(time.time() * 1000)}-{secrets.token_hex(4)}.pdf"

    def render(self, material: StudyMaterial, title: str) -> ExportResult:
        filename = self.new_filename()
        filepath = os.path.join(self.export_dir, filename)
        try:
            doc = SimpleDocTemplate(filepath, pagesize=A4, rightMargin=56, leftMargin=56, topMargin=56, bottomMargin=56, title=title)
            doc.build(build_study_material_story(material, title), onFirstPage=_page_footer, onLaterPages=_page_footer)
        except Exception as e:
            logger.exception("PDF generation error")
            delete_file(filepath)
            raise UpstreamServiceError("Failed to generate PDF") from e
        return ExportResult(filename=filename, filepath=filepath, download_url=f"{EXPORT_URL_PREFIX}/{filename}")

    def resolve(self, filename: str) -> str:
        if not is_safe_filename(filename):
            raise ValidationFailed("Invalid filename")
        path = os.path.join(self.export_dir, filename)
        if not os.path.isfile(path):
            raise NotFound("Export file not found")
        return path

    def delete_export(self, filename: str) -> None:
        path = self.resolve(filename)
        try:
            os.remove(path)
        except OSError as e:
            logger.error("Error deleting export file %s: %s", filename, e)
            raise UpstreamServiceError("Failed to delete export file") from e

    def list_exports(self, limit: int = 10) -> list[dict]:
        if not os.path.isdir(self.export_dir):
            return []
        entries = []
        for name in os.listdir(self.export_dir):
            if not name.endswith(".pdf"):
                continue
            try:
                st = os.stat(os.path.join(self.export_dir, name))
            except OSError:
                continue
            entries.append({
                "filename": name,
                "size": st.st_size,
                "created_at": datetime.fromtimestamp(st.st_mtime),
                "download_url": f"{EXPORT_URL_PREFIX}/{name}",
            })
        entries.sort(key=lambda e: e["created_at"], reverse=True)
        return entries[:limit]

    def cleanup_old_files(self, max_age_hours: Optional[float] = None, now: Optional[float] = None) -> list[str]:
        """Delete exports whose mtime is older than the retention window. Safe to repeat."""
        max_age = (max_age_hours if max_age_hours is not None else self.retention_hours) * 3600
        now = time.time() if now is None else now
        removed = []
        try:
            names = os.listdir(self.export_dir)
        except OSError as e:
            logger.error("Error reading exports directory: %s", e)
            return removed
        for name in names:
            path = os.path.join(self.export_dir, name)
            try:
                if os.path.isfile(path) and now - os.path.getmtime(path) > max_age:
                    os.remove(path)
                    removed.append(name)
                    logger.info("Deleted old export file: %s", name)
            except OSError as e:
                logger.error("Error cleaning up %s: %s", name, e)
        return removed
