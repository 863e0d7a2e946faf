import os
import asyncio
import logging
import datetime
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app import config, models, schemas
from app import repository as repo
from app.ai_provider import GeminiProvider, parse_chat_reply, parse_study_material
from app.errors import NotFound, PermissionDenied, UpstreamServiceError, ValidationFailed
from app.utils import (
    StudyMaterialExporter,
    delete_file,
    generate_unique_filename,
    guess_mime_type,
    save_upload,
    truncate_text,
    upload_path_from_url,
    upload_url,
    validate_image_file,
)
from app.vision import VisionService
from app.youtube import YouTubeService

logger = logging.getLogger(__name__)

# OCR output shorter than this is treated as unreadable; generation is not attempted
MIN_EXTRACTED_CHARS = 10
CHAT_APOLOGY = "I apologize, but I encountered an error while processing your question. Please try again."
MAX_EXPORT_BATCH = 10


@dataclass
class ServiceContainer:
    """Collaborator handles built once at start-up and injected into request handlers."""
    vision: VisionService
    generator: GeminiProvider
    videos: YouTubeService
    exporter: StudyMaterialExporter
    upload_dir: str
    max_upload_bytes: int

    @classmethod
    def from_env(cls) -> "ServiceContainer":
        os.makedirs(config.UPLOAD_DIR, exist_ok=True)
        return cls(
            vision=VisionService(),
            generator=GeminiProvider(),
            videos=YouTubeService(),
            exporter=StudyMaterialExporter(config.EXPORT_DIR, config.EXPORT_RETENTION_HOURS),
            upload_dir=config.UPLOAD_DIR,
            max_upload_bytes=config.MAX_UPLOAD_BYTES,
        )


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# ---- Video suggestions ----
async def suggest_videos(services: ServiceContainer, key_topics: list[str]) -> list[schemas.VideoSuggestion]:
    """Related videos for the given topics; any failure degrades to an empty list."""
    if not key_topics:
        return []
    try:
        return await services.videos.get_related_videos(key_topics)
    except Exception as e:
        logger.warning("Video suggestion lookup failed, continuing without videos: %s", e)
        return []


async def refresh_videos(db: Session, services: ServiceContainer, analysis: models.Analysis) -> list[schemas.VideoSuggestion]:
    topics = repo.key_topics_of(analysis)
    try:
        videos = await services.videos.get_related_videos(topics) if topics else []
    except UpstreamServiceError as e:
        raise UpstreamServiceError("Failed to refresh YouTube videos") from e
    repo.apply_videos(analysis, videos)
    db.commit()
    return videos


async def search_videos(services: ServiceContainer, query: str) -> list[schemas.VideoSuggestion]:
    query = (query or "").strip()
    if len(query) < 3:
        raise ValidationFailed(
            "Search query must be at least 3 characters long",
            errors=[{"field": "query", "message": "Must be at least 3 characters long"}],
        )
    return await services.videos.search_educational_videos(query)


# ---- Upload & analyze ----
async def _generate_for_diagram(services: ServiceContainer, image_bytes: bytes, mime_type: str, prompt: str) -> schemas.GeneratedAnalysis:
    annotations = await services.vision.analyze_image(image_bytes)
    raw = await services.generator.analyze_image(image_bytes, mime_type, prompt, "diagram")
    generated = parse_study_material(raw)
    if not generated.extracted_text and annotations.text:
        generated.extracted_text = annotations.text
    return generated


async def _generate_for_text(services: ServiceContainer, image_bytes: bytes, prompt: str, content_type: str) -> schemas.GeneratedAnalysis:
    extraction = await services.vision.extract_text(image_bytes)
    text = (extraction.text or "").strip()
    if len(text) < MIN_EXTRACTED_CHARS:
        raise ValidationFailed(
            "Unable to extract text from image. Please ensure the image is clear and contains readable text."
        )
    raw = await services.generator.analyze_text(text, prompt, content_type)
    generated = parse_study_material(raw)
    generated.extracted_text = text
    return generated


async def analyze_upload(
    db: Session,
    services: ServiceContainer,
    owner_id: int,
    image_bytes: bytes,
    original_filename: str,
    mime_type: Optional[str],
    prompt: str,
    content_type: str,
    title: str,
) -> models.Analysis:
    """Store the image, extract and generate study material, persist the Analysis.

    The stored image is removed again if any later step fails.
    """
    validate_image_file(mime_type, len(image_bytes), services.max_upload_bytes)
    filename = generate_unique_filename(original_filename, mime_type)
    path = save_upload(services.upload_dir, filename, image_bytes)
    try:
        if content_type == "diagram":
            generated = await _generate_for_diagram(services, image_bytes, mime_type or guess_mime_type(filename), prompt)
        else:
            generated = await _generate_for_text(services, image_bytes, prompt, content_type)

        videos = await suggest_videos(services, generated.material.key_topics)

        analysis = models.Analysis(
            owner_id=owner_id,
            title=title,
            image_url=upload_url(filename),
            user_prompt=prompt,
            content_type=content_type,
            extracted_text=generated.extracted_text,
        )
        repo.apply_material(analysis, generated.material)
        repo.apply_videos(analysis, videos)
        db.add(analysis)
        db.commit()
        db.refresh(analysis)
    except Exception:
        db.rollback()
        delete_file(path)
        raise
    logger.info("Created analysis %s (%s) for user %s", analysis.id, content_type, owner_id)
    return analysis


async def retry_analysis(db: Session, services: ServiceContainer, analysis: models.Analysis, prompt: str) -> models.Analysis:
    """Re-run generation with a new prompt; nothing is mutated unless generation succeeds."""
    try:
        if analysis.content_type == "diagram":
            path = upload_path_from_url(services.upload_dir, analysis.image_url)
            with open(path, "rb") as f:
                image_bytes = f.read()
            raw = await services.generator.analyze_image(image_bytes, guess_mime_type(path), prompt, analysis.content_type)
        else:
            raw = await services.generator.analyze_text(analysis.extracted_text, prompt, analysis.content_type)
    except (UpstreamServiceError, OSError) as e:
        logger.error("Retry of analysis %s failed: %s", analysis.id, e)
        raise UpstreamServiceError("Failed to retry analysis") from e

    generated = parse_study_material(raw)
    videos = await suggest_videos(services, generated.material.key_topics)

    analysis.user_prompt = prompt
    repo.apply_material(analysis, generated.material)
    repo.apply_videos(analysis, videos)
    db.commit()
    db.refresh(analysis)
    return analysis


async def classify_image(services: ServiceContainer, image_bytes: bytes, mime_type: Optional[str]) -> schemas.ImageAnnotations:
    validate_image_file(mime_type, len(image_bytes), services.max_upload_bytes)
    return await services.vision.analyze_image(image_bytes)


def update_title(db: Session, analysis: models.Analysis, title: str) -> models.Analysis:
    title = (title or "").strip()
    if len(title) < 3:
        raise ValidationFailed(
            "Title must be at least 3 characters long",
            errors=[{"field": "title", "message": "Must be at least 3 characters long"}],
        )
    analysis.title = title[:100]
    db.commit()
    return analysis


def delete_analysis(db: Session, services: ServiceContainer, analysis: models.Analysis) -> None:
    """Delete an analysis with its chats, then its stored image (best-effort)."""
    image_path = upload_path_from_url(services.upload_dir, analysis.image_url)
    db.delete(analysis)
    db.commit()
    delete_file(image_path)


def delete_account(db: Session, services: ServiceContainer, user: models.User) -> None:
    image_paths = [upload_path_from_url(services.upload_dir, a.image_url) for a in user.analyses]
    db.delete(user)
    db.commit()
    for path in image_paths:
        delete_file(path)


# ---- Chat ----
async def send_chat_message(
    db: Session, services: ServiceContainer, analysis: models.Analysis, message: str
) -> tuple[models.Chat, models.ChatMessage]:
    """Append the user's turn, then the tutor's reply (or an apology if generation fails)."""
    chat = repo.get_or_create_chat(db, analysis)
    repo.append_message(db, chat, "user", message)
    chat.updated_at = _utcnow()
    db.commit()

    try:
        raw = await services.generator.chat_response(message, repo.material_of(analysis), analysis.extracted_text or "")
        reply = parse_chat_reply(raw)
    except Exception:
        logger.exception("Chat response generation error for analysis %s", analysis.id)
        reply = schemas.ChatReply(type="text", content=CHAT_APOLOGY)

    assistant = repo.append_message(db, chat, "assistant", reply.content, reply.type, reply.mind_map)
    chat.updated_at = _utcnow()
    db.commit()
    db.refresh(assistant)
    return chat, assistant


async def generate_mind_map(services: ServiceContainer, analysis: models.Analysis, custom_prompt: Optional[str] = None) -> schemas.MindMap:
    """Ask the tutor for a fresh mind map; fall back to the stored one on any failure."""
    stored = repo.material_of(analysis).mind_map_data
    prompt = (custom_prompt or "").strip() or f"Create a detailed mind map for the following content: {analysis.extracted_text}"
    try:
        raw = await services.generator.chat_response(prompt, repo.material_of(analysis), analysis.extracted_text or "")
    except Exception as e:
        logger.warning("Mind map generation failed for analysis %s: %s", analysis.id, e)
        return stored
    reply = parse_chat_reply(raw)
    if reply.type == "mindmap" and reply.mind_map is not None:
        return reply.mind_map
    return stored


def clear_chat(db: Session, chat: models.Chat) -> None:
    chat.messages.clear()
    chat.updated_at = _utcnow()
    db.commit()


def update_user_message(db: Session, chat: models.Chat, message_id: int, content: str) -> models.ChatMessage:
    msg = next((m for m in chat.messages if m.id == message_id), None)
    if msg is None:
        raise NotFound("Message not found")
    if msg.role != "user":
        raise PermissionDenied("Can only edit user messages")
    msg.content = content
    chat.updated_at = _utcnow()
    db.commit()
    return msg


def delete_message(db: Session, chat: models.Chat, message_id: int) -> int:
    removed = repo.remove_message_with_reply(db, chat, message_id)
    chat.updated_at = _utcnow()
    db.commit()
    return removed


def recent_chat_summaries(db: Session, owner_id: int, limit: int = 5) -> list[schemas.RecentChat]:
    summaries = []
    for chat in repo.recent_chats(db, owner_id, limit):
        last = chat.messages[-1].content if chat.messages else None
        summaries.append(schemas.RecentChat(
            analysis_id=chat.analysis_id,
            analysis_title=chat.analysis.title,
            content_type=chat.analysis.content_type,
            message_count=len(chat.messages),
            last_message=truncate_text(last, 100) if last else None,
            updated_at=chat.updated_at,
        ))
    return summaries


# ---- Export ----
async def render_pdf(services: ServiceContainer, material: schemas.StudyMaterial, title: str) -> schemas.ExportResult:
    # reportlab is CPU-bound and synchronous
    return await asyncio.to_thread(services.exporter.render, material, title)


async def export_analysis(services: ServiceContainer, analysis: models.Analysis) -> schemas.ExportResult:
    return await render_pdf(services, repo.material_of(analysis), analysis.title)


async def export_flashcards(services: ServiceContainer, analysis: models.Analysis) -> schemas.ExportResult:
    material = repo.material_of(analysis)
    if not material.flashcards:
        raise NotFound("No flashcards found for this analysis")
    flashcards_only = schemas.StudyMaterial(
        summary=f"Flashcards for: {analysis.title}",
        explanation="",
        flashcards=material.flashcards,
        key_topics=material.key_topics,
        mind_map_data=material.mind_map_data,
    )
    return await render_pdf(services, flashcards_only, f"{analysis.title} - Flashcards")


async def export_quiz(services: ServiceContainer, analysis: models.Analysis) -> schemas.ExportResult:
    material = repo.material_of(analysis)
    if not material.quiz_questions:
        raise NotFound("No quiz questions found for this analysis")
    quiz_only = schemas.StudyMaterial(
        summary=f"Quiz Questions for: {analysis.title}",
        explanation="",
        quiz_questions=material.quiz_questions,
        key_topics=material.key_topics,
        mind_map_data=material.mind_map_data,
    )
    return await render_pdf(services, quiz_only, f"{analysis.title} - Quiz Questions")


def combine_materials(analyses: list[models.Analysis]) -> schemas.StudyMaterial:
    pairs = [(a, repo.material_of(a)) for a in analyses]
    return schemas.StudyMaterial(
        summary="\n\n".join(f"{a.title}\n{m.summary}" for a, m in pairs),
        explanation="\n\n".join(f"{a.title}\n{m.explanation}" for a, m in pairs),
        quiz_questions=[q for _, m in pairs for q in m.quiz_questions],
        flashcards=[c for _, m in pairs for c in m.flashcards],
        key_topics=list(dict.fromkeys(t for _, m in pairs for t in m.key_topics)),
        mind_map_data=schemas.MindMap(
            central="Combined Study Material",
            branches=[schemas.MindMapBranch(name=a.title, subtopics=m.key_topics) for a, m in pairs],
        ),
    )


async def export_multiple(db: Session, services: ServiceContainer, owner_id: int, analysis_ids: list[int]) -> tuple[schemas.ExportResult, int]:
    ids = list(dict.fromkeys(analysis_ids or []))
    if not ids:
        raise ValidationFailed("Analysis IDs array is required", errors=[{"field": "analysisIds", "message": "Required"}])
    if len(ids) > MAX_EXPORT_BATCH:
        raise ValidationFailed(
            f"Cannot export more than {MAX_EXPORT_BATCH} analyses at once",
            errors=[{"field": "analysisIds", "message": f"At most {MAX_EXPORT_BATCH} ids"}],
        )
    analyses = repo.get_owned_analyses_by_ids(db, owner_id, ids)
    if len(analyses) != len(ids):
        raise NotFound("Some analyses not found or do not belong to user")
    title = f"Combined Study Material - {len(analyses)} Analyses"
    result = await render_pdf(services, combine_materials(analyses), title)
    return result, len(analyses)


# ---- Users ----
def login_with_google(db: Session, claims: dict) -> models.User:
    """Find the user for verified Google claims, linking or creating the account as needed."""
    google_id = claims.get("sub")
    email = (claims.get("email") or "").lower()
    if not google_id or not email:
        raise ValidationFailed("Google credential is missing required claims")

    user = repo.get_user_by_google_id(db, google_id)
    if user:
        return user
    user = repo.get_user_by_email(db, email)
    if user:
        user.google_id = google_id
        user.avatar = claims.get("picture") or user.avatar
        user.is_verified = True
    else:
        user = models.User(
            email=email,
            name=claims.get("name") or email.split("@")[0],
            google_id=google_id,
            avatar=claims.get("picture"),
            is_verified=True,
        )
        db.add(user)
    db.commit()
    db.refresh(user)
    return user
