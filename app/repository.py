"""Persistence helpers over the SQLAlchemy models.

Every analysis/chat lookup is scoped by owner id; a record that exists but
belongs to someone else is reported exactly like a missing one.
"""
import json
import math
import logging
from collections import Counter
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app import models, schemas
from app.errors import NotFound
from app.models import CONTENT_TYPES

logger = logging.getLogger(__name__)


# --- JSON column helpers ---
def _loads(raw: Optional[str], default):
    try:
        value = json.loads(raw) if raw else default
    except ValueError:
        logger.warning("Corrupt JSON column value; using default")
        return default
    return value if isinstance(value, type(default)) else default


def material_of(analysis: models.Analysis) -> schemas.StudyMaterial:
    data = _loads(analysis.result_json, {})
    data.setdefault("summary", "")
    data.setdefault("explanation", "")
    return schemas.StudyMaterial.model_validate(data)


def videos_of(analysis: models.Analysis) -> list[schemas.VideoSuggestion]:
    return [schemas.VideoSuggestion.model_validate(v) for v in _loads(analysis.videos_json, [])]


def key_topics_of(analysis: models.Analysis) -> list[str]:
    return [str(t) for t in _loads(analysis.key_topics_json, [])]


def apply_material(analysis: models.Analysis, material: schemas.StudyMaterial) -> None:
    analysis.result_json = material.model_dump_json(by_alias=True)
    analysis.summary = material.summary
    analysis.key_topics_json = json.dumps(material.key_topics)


def apply_videos(analysis: models.Analysis, videos: list[schemas.VideoSuggestion]) -> None:
    analysis.videos_json = json.dumps([v.model_dump(by_alias=True) for v in videos])


def to_analysis_out(analysis: models.Analysis) -> schemas.AnalysisOut:
    return schemas.AnalysisOut(
        id=analysis.id,
        title=analysis.title,
        image_url=analysis.image_url,
        content_type=analysis.content_type,
        user_prompt=analysis.user_prompt,
        extracted_text=analysis.extracted_text or "",
        analysis=material_of(analysis),
        youtube_videos=videos_of(analysis),
        chat_id=analysis.chats[0].id if analysis.chats else None,
        created_at=analysis.created_at,
        updated_at=analysis.updated_at,
    )


def to_list_item(analysis: models.Analysis) -> schemas.AnalysisListItem:
    return schemas.AnalysisListItem(
        id=analysis.id,
        title=analysis.title,
        image_url=analysis.image_url,
        content_type=analysis.content_type,
        summary=analysis.summary or "",
        key_topics=key_topics_of(analysis),
        created_at=analysis.created_at,
        updated_at=analysis.updated_at,
    )


def to_recent(analysis: models.Analysis) -> schemas.RecentAnalysis:
    return schemas.RecentAnalysis(
        id=analysis.id, title=analysis.title, content_type=analysis.content_type, created_at=analysis.created_at
    )


# --- Analyses ---
def get_owned_analysis(db: Session, analysis_id: int, owner_id: int) -> models.Analysis:
    a = db.query(models.Analysis).filter(models.Analysis.id == analysis_id, models.Analysis.owner_id == owner_id).first()
    if not a:
        raise NotFound("Analysis not found")
    return a


def list_analyses(
    db: Session,
    owner_id: int,
    page: int = 1,
    limit: int = 10,
    content_type: Optional[str] = None,
    search: Optional[str] = None,
    order_by_updated: bool = False,
) -> tuple[list[models.Analysis], schemas.Pagination]:
    page = max(page, 1)
    limit = max(limit, 1)
    q = db.query(models.Analysis).filter(models.Analysis.owner_id == owner_id)
    if content_type in CONTENT_TYPES:
        q = q.filter(models.Analysis.content_type == content_type)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            models.Analysis.title.ilike(pattern),
            models.Analysis.summary.ilike(pattern),
            models.Analysis.key_topics_json.ilike(pattern),
        ))
    total = q.count()
    order_col = models.Analysis.updated_at if order_by_updated else models.Analysis.created_at
    rows = q.order_by(order_col.desc(), models.Analysis.id.desc()).offset((page - 1) * limit).limit(limit).all()
    pagination = schemas.Pagination(
        current_page=page,
        total_pages=math.ceil(total / limit),
        total_items=total,
        items_per_page=limit,
    )
    return rows, pagination


def get_owned_analyses_by_ids(db: Session, owner_id: int, ids: list[int]) -> list[models.Analysis]:
    rows = db.query(models.Analysis).filter(models.Analysis.owner_id == owner_id, models.Analysis.id.in_(ids)).all()
    by_id = {a.id: a for a in rows}
    # Keep the caller's ordering
    return [by_id[i] for i in dict.fromkeys(ids) if i in by_id]


def recent_analyses(db: Session, owner_id: int, limit: int = 5) -> list[models.Analysis]:
    return (
        db.query(models.Analysis)
        .filter(models.Analysis.owner_id == owner_id)
        .order_by(models.Analysis.created_at.desc(), models.Analysis.id.desc())
        .limit(limit)
        .all()
    )


def analysis_statistics(db: Session, owner_id: int) -> schemas.AnalysisStatistics:
    counts = dict(
        db.query(models.Analysis.content_type, func.count(models.Analysis.id))
        .filter(models.Analysis.owner_id == owner_id)
        .group_by(models.Analysis.content_type)
        .all()
    )
    quiz_total = 0
    card_total = 0
    for (raw,) in db.query(models.Analysis.result_json).filter(models.Analysis.owner_id == owner_id):
        data = _loads(raw, {})
        quiz_total += len(data.get("quizQuestions") or [])
        card_total += len(data.get("flashcards") or [])
    return schemas.AnalysisStatistics(
        total_analyses=sum(counts.values()),
        handwritten_count=counts.get("handwritten", 0),
        textbook_count=counts.get("textbook", 0),
        diagram_count=counts.get("diagram", 0),
        total_quiz_questions=quiz_total,
        total_flashcards=card_total,
    )


def popular_topics(db: Session, owner_id: int, limit: int = 20) -> list[schemas.PopularTopic]:
    counts: Counter = Counter()
    last_used: dict = {}
    rows = db.query(models.Analysis.key_topics_json, models.Analysis.updated_at).filter(models.Analysis.owner_id == owner_id)
    for raw, updated_at in rows:
        for topic in _loads(raw, []):
            counts[topic] += 1
            if topic not in last_used or (updated_at and updated_at > last_used[topic]):
                last_used[topic] = updated_at
    ranked = sorted(counts.items(), key=lambda kv: (kv[1], last_used.get(kv[0]).timestamp() if last_used.get(kv[0]) else 0), reverse=True)
    return [schemas.PopularTopic(name=name, count=count, last_used=last_used.get(name)) for name, count in ranked[:limit]]


# --- Chats ---
def get_chat_for_analysis(db: Session, analysis_id: int, owner_id: int) -> Optional[models.Chat]:
    return db.query(models.Chat).filter(models.Chat.analysis_id == analysis_id, models.Chat.owner_id == owner_id).first()


def get_or_create_chat(db: Session, analysis: models.Analysis) -> models.Chat:
    chat = get_chat_for_analysis(db, analysis.id, analysis.owner_id)
    if chat is None:
        chat = models.Chat(analysis_id=analysis.id, owner_id=analysis.owner_id)
        db.add(chat)
        db.flush()
    return chat


def get_owned_chat(db: Session, chat_id: int, owner_id: int) -> models.Chat:
    chat = db.query(models.Chat).filter(models.Chat.id == chat_id, models.Chat.owner_id == owner_id).first()
    if not chat:
        raise NotFound("Chat not found")
    return chat


def append_message(
    db: Session,
    chat: models.Chat,
    role: str,
    content: str,
    message_type: str = "text",
    mind_map: Optional[schemas.MindMap] = None,
) -> models.ChatMessage:
    msg = models.ChatMessage(
        role=role,
        content=content,
        type=message_type,
        mind_map_json=mind_map.model_dump_json(by_alias=True) if mind_map is not None else None,
    )
    chat.messages.append(msg)
    db.add(msg)
    return msg


def message_to_out(msg: models.ChatMessage) -> schemas.ChatMessageOut:
    mind_map = None
    if msg.mind_map_json:
        data = _loads(msg.mind_map_json, {})
        mind_map = schemas.MindMap.model_validate(data) if data else None
    return schemas.ChatMessageOut(
        id=msg.id,
        role=msg.role,
        content=msg.content,
        type=msg.type,
        mind_map_data=mind_map,
        timestamp=msg.timestamp,
    )


def remove_message_with_reply(db: Session, chat: models.Chat, message_id: int) -> int:
    """Delete a message; a user message takes its immediately following assistant reply with it.

    Returns the number of messages removed.
    """
    messages = list(chat.messages)
    index = next((i for i, m in enumerate(messages) if m.id == message_id), None)
    if index is None:
        raise NotFound("Message not found")
    doomed = [messages[index]]
    if messages[index].role == "user" and index + 1 < len(messages) and messages[index + 1].role == "assistant":
        doomed.append(messages[index + 1])
    for m in doomed:
        chat.messages.remove(m)
    return len(doomed)


def chat_statistics(db: Session, owner_id: int) -> schemas.ChatStatistics:
    per_chat = (
        db.query(models.Chat.id, func.count(models.ChatMessage.id))
        .outerjoin(models.ChatMessage, models.ChatMessage.chat_id == models.Chat.id)
        .filter(models.Chat.owner_id == owner_id)
        .group_by(models.Chat.id)
        .all()
    )
    total_chats = len(per_chat)
    total_messages = sum(n for _, n in per_chat)
    return schemas.ChatStatistics(
        total_chats=total_chats,
        total_messages=total_messages,
        avg_messages_per_chat=round(total_messages / total_chats, 2) if total_chats else 0.0,
    )


def recent_chats(db: Session, owner_id: int, limit: int = 5) -> list[models.Chat]:
    return (
        db.query(models.Chat)
        .filter(models.Chat.owner_id == owner_id)
        .order_by(models.Chat.updated_at.desc(), models.Chat.id.desc())
        .limit(limit)
        .all()
    )


# --- Users ---
def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def get_user_by_google_id(db: Session, google_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.google_id == google_id).first()
