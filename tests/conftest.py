import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import auth, models
from app import repository as repo
from app.ai_provider import parse_study_material
from app.database import create_db_and_tables, get_db
from app.main import app, get_services
from app.schemas import ExtractedText, ImageAnnotations
from app.services import ServiceContainer
from app.utils import StudyMaterialExporter
from factories import MATERIAL, OCR_TEXT, make_video


@pytest.fixture(autouse=True)
def mock_cloud_env(monkeypatch):
    """Keep tests away from real credentials."""
    monkeypatch.setenv("GOOGLE_API_KEY", "mock-key")
    monkeypatch.setenv("YOUTUBE_API_KEY", "mock-key")
    monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)


@pytest.fixture
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def fake_services(tmp_path):
    vision = MagicMock()
    vision.extract_text = AsyncMock(return_value=ExtractedText(text=OCR_TEXT, confidence=0.7))
    vision.analyze_image = AsyncMock(return_value=ImageAnnotations(text="A B", content_type="diagram"))

    generator = MagicMock()
    generator.analyze_text = AsyncMock(return_value=json.dumps(MATERIAL))
    generator.analyze_image = AsyncMock(return_value=json.dumps({**MATERIAL, "extractedText": "Light -> Glucose"}))
    generator.chat_response = AsyncMock(return_value="Chlorophyll is the pigment that captures light.")

    videos = MagicMock()
    videos.get_related_videos = AsyncMock(return_value=[make_video("abc", 500), make_video("def", 50)])
    videos.search_educational_videos = AsyncMock(return_value=[make_video("xyz")])
    videos.get_trending_educational_videos = AsyncMock(return_value=[make_video("top", 10_000)])

    return ServiceContainer(
        vision=vision,
        generator=generator,
        videos=videos,
        exporter=StudyMaterialExporter(str(tmp_path / "exports")),
        upload_dir=str(tmp_path / "uploads"),
        max_upload_bytes=1024 * 1024,
    )


@pytest.fixture
def make_user(db_session):
    def _make(email="student@example.com", name="Student", password="Secret123"):
        user = models.User(email=email, name=name, hashed_password=auth.get_password_hash(password))
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {auth.token_for_user(user.id)}"}


@pytest.fixture
def make_analysis(db_session, fake_services):
    def _make(owner, title="Photosynthesis notes", content_type="textbook", material=None, image_name="notes.png"):
        generated = parse_study_material(json.dumps(material if material is not None else MATERIAL))
        analysis = models.Analysis(
            owner_id=owner.id,
            title=title,
            image_url=f"/uploads/{image_name}",
            user_prompt="Explain this page",
            content_type=content_type,
            extracted_text=OCR_TEXT,
        )
        repo.apply_material(analysis, generated.material)
        repo.apply_videos(analysis, [make_video("abc", 500)])
        db_session.add(analysis)
        db_session.commit()
        db_session.refresh(analysis)
        return analysis
    return _make


@pytest.fixture
def client(db_session, fake_services):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_services] = lambda: fake_services
    yield TestClient(app)
    app.dependency_overrides.clear()
