import re
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, model_validator
from pydantic.alias_generators import to_camel

ContentType = Literal["handwritten", "textbook", "diagram"]
MessageType = Literal["text", "mindmap"]

DEFAULT_MIND_MAP_CENTRAL = "Main Topic"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CamelModel(BaseModel):
    """Base for every API payload: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Study material ---
class MultipleChoiceQuestion(CamelModel):
    type: Literal["mcq"] = "mcq"
    question: str
    options: List[str]
    correct: int

    @model_validator(mode="after")
    def _correct_in_range(self):
        if not 0 <= self.correct < len(self.options):
            raise ValueError("correct must index one of the options")
        return self


class ShortAnswerQuestion(CamelModel):
    type: Literal["short_answer"] = "short_answer"
    question: str
    answer: str


QuizQuestion = Annotated[Union[MultipleChoiceQuestion, ShortAnswerQuestion], Field(discriminator="type")]


class Flashcard(CamelModel):
    front: str
    back: str


class MindMapBranch(CamelModel):
    name: str
    subtopics: List[str] = Field(default_factory=list)


class MindMap(CamelModel):
    central: str = DEFAULT_MIND_MAP_CENTRAL
    branches: List[MindMapBranch] = Field(default_factory=list)


class StudyMaterial(CamelModel):
    summary: str
    explanation: str
    quiz_questions: List[QuizQuestion] = Field(default_factory=list)
    flashcards: List[Flashcard] = Field(default_factory=list)
    key_topics: List[str] = Field(default_factory=list)
    mind_map_data: MindMap = Field(default_factory=MindMap)


class GeneratedAnalysis(BaseModel):
    """Parsed output of one generation call."""
    extracted_text: str = ""
    material: StudyMaterial


class ChatReply(BaseModel):
    type: MessageType = "text"
    content: str
    mind_map: Optional[MindMap] = None


class VideoSuggestion(CamelModel):
    title: str
    video_id: str
    thumbnail: str = ""
    channel_title: str = ""
    published_at: Optional[str] = None
    description: str = ""
    views: int = 0
    formatted_views: str = "0"
    likes: int = 0
    duration: str = "0:00"


# --- Vision ---
class Annotation(BaseModel):
    name: str
    confidence: float = 0.0


class ExtractedText(BaseModel):
    text: str
    confidence: float


class ImageAnnotations(BaseModel):
    text: str = ""
    labels: List[Annotation] = Field(default_factory=list)
    objects: List[Annotation] = Field(default_factory=list)
    content_type: ContentType = "textbook"


# --- Generic responses ---
class SimpleResponse(CamelModel):
    success: bool = True
    message: str


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


# --- Analyses ---
class AnalysisOut(CamelModel):
    id: int
    title: str
    image_url: str
    content_type: ContentType
    user_prompt: str
    extracted_text: str
    analysis: StudyMaterial
    youtube_videos: List[VideoSuggestion] = Field(default_factory=list)
    chat_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    analysis: AnalysisOut


class AnalysisListItem(CamelModel):
    id: int
    title: str
    image_url: str
    content_type: ContentType
    summary: str = ""
    key_topics: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisListResponse(CamelModel):
    success: bool = True
    analyses: List[AnalysisListItem]
    pagination: Pagination


class UploadForm(CamelModel):
    prompt: Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=500)]
    content_type: ContentType
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=100)]


class RetryRequest(CamelModel):
    prompt: Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=500)]


class TitleUpdateRequest(CamelModel):
    title: str = ""


class TitleRef(CamelModel):
    id: int
    title: str


class TitleUpdateResponse(CamelModel):
    success: bool = True
    message: str
    analysis: TitleRef


class QuizResponse(CamelModel):
    success: bool = True
    quiz_questions: List[QuizQuestion]
    title: str


class FlashcardsResponse(CamelModel):
    success: bool = True
    flashcards: List[Flashcard]
    title: str


class MindMapResponse(CamelModel):
    success: bool = True
    mind_map_data: MindMap
    title: str


class VideosResponse(CamelModel):
    success: bool = True
    videos: List[VideoSuggestion]
    key_topics: List[str] = Field(default_factory=list)
    title: str


class RefreshVideosResponse(CamelModel):
    success: bool = True
    message: str
    videos: List[VideoSuggestion]


class VideoSearchResponse(CamelModel):
    success: bool = True
    videos: List[VideoSuggestion]
    query: str


class VideoListResponse(CamelModel):
    success: bool = True
    videos: List[VideoSuggestion]


class ClassifyResponse(CamelModel):
    success: bool = True
    content_type: ContentType
    extracted_text: str
    labels: List[Annotation] = Field(default_factory=list)
    objects: List[Annotation] = Field(default_factory=list)


# --- Statistics ---
class AnalysisStatistics(CamelModel):
    total_analyses: int = 0
    handwritten_count: int = 0
    textbook_count: int = 0
    diagram_count: int = 0
    total_quiz_questions: int = 0
    total_flashcards: int = 0


class RecentAnalysis(CamelModel):
    id: int
    title: str
    content_type: ContentType
    created_at: Optional[datetime] = None


class StatisticsResponse(CamelModel):
    success: bool = True
    statistics: AnalysisStatistics
    recent_analyses: Optional[List[RecentAnalysis]] = None


class PopularTopic(CamelModel):
    name: str
    count: int
    last_used: Optional[datetime] = None


class PopularTopicsResponse(CamelModel):
    success: bool = True
    topics: List[PopularTopic]


# --- Chat ---
class ChatMessageOut(CamelModel):
    id: Optional[int] = None
    role: Literal["user", "assistant"]
    content: str
    type: MessageType = "text"
    mind_map_data: Optional[MindMap] = None
    timestamp: Optional[datetime] = None


class UploadDetailResponse(CamelModel):
    success: bool = True
    analysis: AnalysisOut
    chat_history: List[ChatMessageOut] = Field(default_factory=list)


class SendMessageRequest(CamelModel):
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=1000)]
    analysis_id: int


class SendMessageResponse(CamelModel):
    success: bool = True
    message: str
    response: ChatMessageOut
    chat_id: int


class ChatHistoryResponse(CamelModel):
    success: bool = True
    messages: List[ChatMessageOut]
    chat_id: Optional[int] = None
    analysis_title: Optional[str] = None
    total_messages: Optional[int] = None


class MindMapRequest(CamelModel):
    custom_prompt: Optional[str] = None


class MessageUpdateRequest(CamelModel):
    content: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=1000)]


class MessageUpdateResponse(CamelModel):
    success: bool = True
    message: str
    updated_message: ChatMessageOut


class ChatStatistics(CamelModel):
    total_chats: int = 0
    total_messages: int = 0
    avg_messages_per_chat: float = 0.0


class RecentChat(CamelModel):
    analysis_id: int
    analysis_title: str
    content_type: ContentType
    message_count: int
    last_message: Optional[str] = None
    updated_at: Optional[datetime] = None


class ChatStatisticsResponse(CamelModel):
    success: bool = True
    statistics: ChatStatistics
    recent_chats: List[RecentChat]


# --- Export ---
class ExportResult(BaseModel):
    filename: str
    filepath: str
    download_url: str


class ExportResponse(CamelModel):
    success: bool = True
    message: str
    download_url: str
    filename: str
    analyses_count: Optional[int] = None


class MultipleExportRequest(CamelModel):
    analysis_ids: List[int] = Field(default_factory=list)


class ExportFile(CamelModel):
    filename: str
    size: int
    created_at: datetime
    download_url: str


class ExportHistoryResponse(CamelModel):
    success: bool = True
    recent_analyses: List[RecentAnalysis]
    available_exports: List[ExportFile]


# --- Auth ---
def _check_email(value: str) -> str:
    value = (value or "").strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email")
    return value


def _check_password_strength(value: str) -> str:
    if len(value or "") < 6:
        raise ValueError("Password must be at least 6 characters long")
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError("Password must contain at least one lowercase letter, one uppercase letter, and one number")
    return value


Email = Annotated[str, AfterValidator(_check_email)]
Password = Annotated[str, AfterValidator(_check_password_strength)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]


class RegisterRequest(CamelModel):
    name: Name
    email: Email
    password: Password


class LoginRequest(CamelModel):
    email: Email
    password: Annotated[str, StringConstraints(min_length=1)]


class GoogleLoginRequest(CamelModel):
    id_token: Annotated[str, StringConstraints(min_length=1)]


class ProfileUpdateRequest(CamelModel):
    name: Optional[Name] = None
    email: Optional[Email] = None


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: Password


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    avatar: Optional[str] = None
    is_verified: bool = False
    created_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    success: bool = True
    message: str
    token: str
    user: UserOut


class ProfileResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    user: UserOut
    analyses: Optional[List[RecentAnalysis]] = None


class Token(BaseModel): access_token: str; token_type: str
