import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import auth, config, models, schemas, services
from app import repository as repo
from app.database import create_db_and_tables, get_db
from app.errors import AppError, AuthenticationFailed, NotFound, ValidationFailed
from app.services import ServiceContainer
from app.utils import validate_image_file

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    create_db_and_tables()
    if getattr(app.state, "services", None) is None:
        app.state.services = ServiceContainer.from_env()
    logger.info("Study Helper API started")
    yield


app = FastAPI(
    title="Study Helper API",
    description="Turns photos of study material into summaries, quizzes, flashcards and a follow-up tutor.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


# ---- Error responses ----
def _field_errors(errors: list[dict]) -> list[dict]:
    fields = []
    for err in errors:
        names = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")]
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        fields.append({"field": names[-1] if names else "", "message": message})
    return fields


def _validated(model, **values):
    try:
        return model(**values)
    except ValidationError as e:
        raise ValidationFailed("Validation failed", errors=_field_errors(e.errors())) from e


async def _read_image(image: Optional[UploadFile], max_bytes: int) -> bytes:
    if image is None:
        raise ValidationFailed("No image file provided", errors=[{"field": "image", "message": "Required"}])
    # Reject on the declared size without reading the body
    if image.size is not None:
        validate_image_file(image.content_type, image.size, max_bytes)
    return await image.read()


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = {"success": False, "message": exc.message}
    if isinstance(exc, ValidationFailed) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "errors": _field_errors(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ---- Dependencies ----
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.User:
    if not token:
        raise AuthenticationFailed("Access denied. No token provided.")
    user = repo.get_user(db, auth.decode_user_id(token))
    if user is None:
        raise AuthenticationFailed("Invalid token")
    return user


@app.get("/health")
def health():
    return {"status": "OK", "message": "Study Helper API is running"}


# ---- Auth ----
def _auth_response(user: models.User, message: str) -> schemas.AuthResponse:
    return schemas.AuthResponse(message=message, token=auth.token_for_user(user.id), user=schemas.UserOut.model_validate(user))


@app.post("/api/auth/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: schemas.RegisterRequest, db: Session = Depends(get_db)):
    if repo.get_user_by_email(db, body.email):
        raise ValidationFailed("User already exists with this email")
    user = models.User(name=body.name, email=body.email, hashed_password=auth.get_password_hash(body.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return _auth_response(user, "User registered successfully")


@app.post("/api/auth/login", response_model=schemas.AuthResponse)
def login(body: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = repo.get_user_by_email(db, body.email)
    if not user or not auth.verify_password(body.password, user.hashed_password):
        raise AuthenticationFailed("Invalid credentials")
    return _auth_response(user, "Login successful")


@app.post("/token", response_model=schemas.Token)
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = repo.get_user_by_email(db, form_data.username.strip().lower())
    if not user or not auth.verify_password(form_data.password, user.hashed_password):
        raise AuthenticationFailed("Incorrect email or password")
    return {"access_token": auth.token_for_user(user.id), "token_type": "bearer"}


@app.post("/api/auth/google", response_model=schemas.AuthResponse)
def google_login(body: schemas.GoogleLoginRequest, db: Session = Depends(get_db)):
    claims = auth.verify_google_id_token(body.id_token)
    user = services.login_with_google(db, claims)
    return _auth_response(user, "Google login successful")


@app.get("/api/auth/profile", response_model=schemas.ProfileResponse)
def get_profile(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    recent = [repo.to_recent(a) for a in repo.recent_analyses(db, current_user.id, 5)]
    return schemas.ProfileResponse(user=schemas.UserOut.model_validate(current_user), analyses=recent)


@app.put("/api/auth/profile", response_model=schemas.ProfileResponse)
def update_profile(body: schemas.ProfileUpdateRequest, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    if body.email and body.email != current_user.email:
        if repo.get_user_by_email(db, body.email):
            raise ValidationFailed("Email already in use")
        current_user.email = body.email
    if body.name:
        current_user.name = body.name
    db.commit()
    db.refresh(current_user)
    return schemas.ProfileResponse(message="Profile updated successfully", user=schemas.UserOut.model_validate(current_user))


@app.put("/api/auth/change-password", response_model=schemas.SimpleResponse)
def change_password(body: schemas.ChangePasswordRequest, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    if not current_user.hashed_password:
        raise ValidationFailed("Password login is not enabled for this account")
    if not auth.verify_password(body.current_password, current_user.hashed_password):
        raise ValidationFailed("Current password is incorrect")
    current_user.hashed_password = auth.get_password_hash(body.new_password)
    db.commit()
    return schemas.SimpleResponse(message="Password changed successfully")


@app.delete("/api/auth/account", response_model=schemas.SimpleResponse)
def delete_account(
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    services.delete_account(db, svc, current_user)
    return schemas.SimpleResponse(message="Account deleted successfully")


@app.post("/api/auth/logout", response_model=schemas.SimpleResponse)
def logout(current_user: models.User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy
    return schemas.SimpleResponse(message="Logout successful")


# ---- Upload ----
@app.post("/api/upload/analyze", response_model=schemas.AnalysisResponse, status_code=status.HTTP_201_CREATED)
async def upload_and_analyze(
    image: Optional[UploadFile] = File(None),
    prompt: str = Form(""),
    content_type: str = Form("", alias="contentType"),
    title: str = Form(""),
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    form = _validated(schemas.UploadForm, prompt=prompt, contentType=content_type, title=title)
    data = await _read_image(image, svc.max_upload_bytes)
    analysis = await services.analyze_upload(
        db, svc, current_user.id, data, image.filename or "", image.content_type,
        form.prompt, form.content_type, form.title,
    )
    return schemas.AnalysisResponse(message="Image analyzed successfully", analysis=repo.to_analysis_out(analysis))


@app.post("/api/upload/classify", response_model=schemas.ClassifyResponse)
async def classify_upload(
    image: Optional[UploadFile] = File(None),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    data = await _read_image(image, svc.max_upload_bytes)
    result = await services.classify_image(svc, data, image.content_type)
    return schemas.ClassifyResponse(
        content_type=result.content_type, extracted_text=result.text, labels=result.labels, objects=result.objects
    )


@app.get("/api/upload/my-uploads", response_model=schemas.AnalysisListResponse)
def my_uploads(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    content_type: Optional[str] = Query(None, alias="contentType"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    rows, pagination = repo.list_analyses(db, current_user.id, page, limit, content_type)
    return schemas.AnalysisListResponse(analyses=[repo.to_list_item(a) for a in rows], pagination=pagination)


@app.get("/api/upload/statistics", response_model=schemas.StatisticsResponse)
def upload_statistics(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    return schemas.StatisticsResponse(statistics=repo.analysis_statistics(db, current_user.id))


@app.get("/api/upload/{analysis_id}", response_model=schemas.UploadDetailResponse)
def get_upload(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    chat = repo.get_chat_for_analysis(db, analysis.id, current_user.id)
    history = [repo.message_to_out(m) for m in chat.messages] if chat else []
    return schemas.UploadDetailResponse(analysis=repo.to_analysis_out(analysis), chat_history=history)


@app.delete("/api/upload/{analysis_id}", response_model=schemas.SimpleResponse)
def delete_upload(
    analysis_id: int,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    services.delete_analysis(db, svc, analysis)
    return schemas.SimpleResponse(message="Analysis deleted successfully")


@app.post("/api/upload/{analysis_id}/retry", response_model=schemas.AnalysisResponse)
async def retry_upload(
    analysis_id: int,
    body: schemas.RetryRequest,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    analysis = await services.retry_analysis(db, svc, analysis, body.prompt)
    return schemas.AnalysisResponse(message="Analysis retried successfully", analysis=repo.to_analysis_out(analysis))


# ---- Analysis views ----
@app.get("/api/analysis", response_model=schemas.AnalysisListResponse)
def list_analyses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    content_type: Optional[str] = Query(None, alias="contentType"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    rows, pagination = repo.list_analyses(db, current_user.id, page, limit, content_type, search, order_by_updated=True)
    return schemas.AnalysisListResponse(analyses=[repo.to_list_item(a) for a in rows], pagination=pagination)


@app.get("/api/analysis/statistics", response_model=schemas.StatisticsResponse)
def analysis_statistics(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    return schemas.StatisticsResponse(
        statistics=repo.analysis_statistics(db, current_user.id),
        recent_analyses=[repo.to_recent(a) for a in repo.recent_analyses(db, current_user.id, 5)],
    )


@app.get("/api/analysis/popular-topics", response_model=schemas.PopularTopicsResponse)
def popular_topics(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    return schemas.PopularTopicsResponse(topics=repo.popular_topics(db, current_user.id))


@app.get("/api/analysis/youtube/search", response_model=schemas.VideoSearchResponse)
async def youtube_search(
    query: str = "",
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    videos = await services.search_videos(svc, query)
    return schemas.VideoSearchResponse(videos=videos, query=query.strip())


@app.get("/api/analysis/youtube/trending", response_model=schemas.VideoListResponse)
async def youtube_trending(svc: ServiceContainer = Depends(get_services), current_user: models.User = Depends(get_current_user)):
    return schemas.VideoListResponse(videos=await svc.videos.get_trending_educational_videos())


@app.get("/api/analysis/{analysis_id}", response_model=schemas.AnalysisResponse)
def get_analysis(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return schemas.AnalysisResponse(analysis=repo.to_analysis_out(analysis))


@app.get("/api/analysis/{analysis_id}/quiz", response_model=schemas.QuizResponse)
def get_quiz(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return schemas.QuizResponse(quiz_questions=repo.material_of(analysis).quiz_questions, title=analysis.title)


@app.get("/api/analysis/{analysis_id}/flashcards", response_model=schemas.FlashcardsResponse)
def get_flashcards(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return schemas.FlashcardsResponse(flashcards=repo.material_of(analysis).flashcards, title=analysis.title)


@app.get("/api/analysis/{analysis_id}/mindmap", response_model=schemas.MindMapResponse)
def get_mind_map(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return schemas.MindMapResponse(mind_map_data=repo.material_of(analysis).mind_map_data, title=analysis.title)


@app.get("/api/analysis/{analysis_id}/videos", response_model=schemas.VideosResponse)
def get_videos(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return schemas.VideosResponse(videos=repo.videos_of(analysis), key_topics=repo.key_topics_of(analysis), title=analysis.title)


@app.put("/api/analysis/{analysis_id}/title", response_model=schemas.TitleUpdateResponse)
def update_title(
    analysis_id: int,
    body: schemas.TitleUpdateRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    services.update_title(db, analysis, body.title)
    return schemas.TitleUpdateResponse(
        message="Title updated successfully", analysis=schemas.TitleRef(id=analysis.id, title=analysis.title)
    )


@app.post("/api/analysis/{analysis_id}/videos/refresh", response_model=schemas.RefreshVideosResponse)
async def refresh_videos(
    analysis_id: int,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    videos = await services.refresh_videos(db, svc, analysis)
    return schemas.RefreshVideosResponse(message="YouTube videos refreshed successfully", videos=videos)


# ---- Chat ----
@app.post("/api/chat/message", response_model=schemas.SendMessageResponse)
async def send_message(
    body: schemas.SendMessageRequest,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, body.analysis_id, current_user.id)
    chat, reply = await services.send_chat_message(db, svc, analysis, body.message)
    return schemas.SendMessageResponse(message="Message sent successfully", response=repo.message_to_out(reply), chat_id=chat.id)


@app.get("/api/chat/statistics", response_model=schemas.ChatStatisticsResponse)
def chat_statistics(db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    return schemas.ChatStatisticsResponse(
        statistics=repo.chat_statistics(db, current_user.id),
        recent_chats=services.recent_chat_summaries(db, current_user.id),
    )


@app.get("/api/chat/history/{analysis_id}", response_model=schemas.ChatHistoryResponse)
def chat_history(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    chat = repo.get_chat_for_analysis(db, analysis.id, current_user.id)
    if chat is None:
        return schemas.ChatHistoryResponse(messages=[], analysis_title=analysis.title, total_messages=0)
    return schemas.ChatHistoryResponse(
        messages=[repo.message_to_out(m) for m in chat.messages],
        chat_id=chat.id,
        analysis_title=analysis.title,
        total_messages=len(chat.messages),
    )


@app.get("/api/chat/history/{analysis_id}/messages", response_model=schemas.ChatHistoryResponse)
def chat_messages_by_type(
    analysis_id: int,
    type: Optional[schemas.MessageType] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    chat = repo.get_chat_for_analysis(db, analysis.id, current_user.id)
    messages = [m for m in chat.messages if type is None or m.type == type] if chat else []
    return schemas.ChatHistoryResponse(
        messages=[repo.message_to_out(m) for m in messages],
        chat_id=chat.id if chat else None,
        analysis_title=analysis.title,
        total_messages=len(messages),
    )


@app.delete("/api/chat/history/{analysis_id}", response_model=schemas.SimpleResponse)
def clear_chat_history(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    chat = repo.get_chat_for_analysis(db, analysis_id, current_user.id)
    if chat is None:
        raise NotFound("Chat not found")
    services.clear_chat(db, chat)
    return schemas.SimpleResponse(message="Chat history cleared successfully")


@app.post("/api/chat/mindmap/{analysis_id}", response_model=schemas.MindMapResponse)
async def generate_mind_map(
    analysis_id: int,
    body: Optional[schemas.MindMapRequest] = None,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    mind_map = await services.generate_mind_map(svc, analysis, body.custom_prompt if body else None)
    return schemas.MindMapResponse(mind_map_data=mind_map, title=analysis.title)


@app.put("/api/chat/{chat_id}/message/{message_id}", response_model=schemas.MessageUpdateResponse)
def update_message(
    chat_id: int,
    message_id: int,
    body: schemas.MessageUpdateRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    chat = repo.get_owned_chat(db, chat_id, current_user.id)
    msg = services.update_user_message(db, chat, message_id, body.content)
    return schemas.MessageUpdateResponse(message="Message updated successfully", updated_message=repo.message_to_out(msg))


@app.delete("/api/chat/{chat_id}/message/{message_id}", response_model=schemas.SimpleResponse)
def delete_message(chat_id: int, message_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    chat = repo.get_owned_chat(db, chat_id, current_user.id)
    services.delete_message(db, chat, message_id)
    return schemas.SimpleResponse(message="Message deleted successfully")


@app.delete("/api/chat/{analysis_id}", response_model=schemas.SimpleResponse)
def delete_chat(analysis_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    chat = repo.get_chat_for_analysis(db, analysis_id, current_user.id)
    if chat is None:
        raise NotFound("Chat not found")
    db.delete(chat)
    db.commit()
    return schemas.SimpleResponse(message="Chat deleted successfully")


# ---- Export ----
def _export_response(result: schemas.ExportResult, message: str, count: Optional[int] = None) -> schemas.ExportResponse:
    return schemas.ExportResponse(message=message, download_url=result.download_url, filename=result.filename, analyses_count=count)


@app.post("/api/export/pdf/multiple", response_model=schemas.ExportResponse)
async def export_multiple(
    body: schemas.MultipleExportRequest,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    result, count = await services.export_multiple(db, svc, current_user.id, body.analysis_ids)
    return _export_response(result, "Multiple analyses PDF generated successfully", count)


@app.post("/api/export/pdf/{analysis_id}", response_model=schemas.ExportResponse)
async def export_pdf(
    analysis_id: int,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return _export_response(await services.export_analysis(svc, analysis), "PDF generated successfully")


@app.post("/api/export/flashcards/{analysis_id}", response_model=schemas.ExportResponse)
async def export_flashcards(
    analysis_id: int,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return _export_response(await services.export_flashcards(svc, analysis), "Flashcards PDF generated successfully")


@app.post("/api/export/quiz/{analysis_id}", response_model=schemas.ExportResponse)
async def export_quiz(
    analysis_id: int,
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    analysis = repo.get_owned_analysis(db, analysis_id, current_user.id)
    return _export_response(await services.export_quiz(svc, analysis), "Quiz PDF generated successfully")


@app.get("/api/export/history", response_model=schemas.ExportHistoryResponse)
def export_history(
    db: Session = Depends(get_db),
    svc: ServiceContainer = Depends(get_services),
    current_user: models.User = Depends(get_current_user),
):
    return schemas.ExportHistoryResponse(
        recent_analyses=[repo.to_recent(a) for a in repo.recent_analyses(db, current_user.id, 20)],
        available_exports=[schemas.ExportFile(**entry) for entry in svc.exporter.list_exports(10)],
    )


@app.get("/api/export/download/{filename}")
def download_export(filename: str, svc: ServiceContainer = Depends(get_services)):
    path = svc.exporter.resolve(filename)
    return FileResponse(path, media_type="application/pdf", filename=filename)


@app.delete("/api/export/{filename}", response_model=schemas.SimpleResponse)
def delete_export(filename: str, svc: ServiceContainer = Depends(get_services), current_user: models.User = Depends(get_current_user)):
    svc.exporter.delete_export(filename)
    return schemas.SimpleResponse(message="Export file deleted successfully")


@app.post("/api/export/cleanup", response_model=schemas.SimpleResponse)
def cleanup_exports(svc: ServiceContainer = Depends(get_services), current_user: models.User = Depends(get_current_user)):
    removed = svc.exporter.cleanup_old_files()
    return schemas.SimpleResponse(message=f"Cleaned up {len(removed)} old export files")
