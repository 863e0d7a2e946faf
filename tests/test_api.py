import json
from unittest.mock import AsyncMock

from starlette.datastructures import UploadFile

from app import models
from app.errors import UpstreamServiceError
from factories import PNG_BYTES


def _upload(client, headers, **overrides):
    data = {"prompt": "Explain photosynthesis", "contentType": "textbook", "title": "Photosynthesis notes"}
    data.update(overrides)
    return client.post(
        "/api/upload/analyze",
        headers=headers,
        data=data,
        files={"image": ("notes.png", PNG_BYTES, "image/png")},
    )


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "OK"


def test_register_then_login(client):
    resp = client.post("/api/auth/register", json={"name": "Ada", "email": "Ada@Example.com", "password": "Passw0rd"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["user"]["email"] == "ada@example.com"
    assert body["token"]

    resp = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "Passw0rd"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Login successful"

    resp = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_register_validation_errors_are_listed(client):
    resp = client.post("/api/auth/register", json={"name": "A", "email": "nope", "password": "weak"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Validation failed"
    fields = {e["field"]: e["message"] for e in body["errors"]}
    assert set(fields) == {"name", "email", "password"}
    assert fields["email"] == "Please provide a valid email"


def test_oauth2_token_endpoint(client, user):
    resp = client.post("/token", data={"username": user.email, "password": "Secret123"})
    assert resp.status_code == 200
    assert resp.json()["token_type"] == "bearer"


def test_protected_routes_require_token(client):
    resp = client.get("/api/analysis")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Access denied. No token provided."}

    resp = client.get("/api/analysis", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_profile_update_and_password_change(client, auth_headers):
    resp = client.put("/api/auth/profile", headers=auth_headers, json={"name": "  New Name  "})
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == "New Name"

    resp = client.put(
        "/api/auth/change-password",
        headers=auth_headers,
        json={"currentPassword": "wrong", "newPassword": "Another1"},
    )
    assert resp.status_code == 400

    resp = client.put(
        "/api/auth/change-password",
        headers=auth_headers,
        json={"currentPassword": "Secret123", "newPassword": "Another1"},
    )
    assert resp.status_code == 200


def test_upload_analyze_creates_analysis(client, auth_headers, fake_services):
    resp = _upload(client, auth_headers)
    assert resp.status_code == 201
    body = resp.json()
    analysis = body["analysis"]
    assert body["message"] == "Image analyzed successfully"
    assert analysis["contentType"] == "textbook"
    assert analysis["imageUrl"].startswith("/uploads/notes-")
    assert analysis["analysis"]["quizQuestions"][0]["correct"] == 1
    assert analysis["youtubeVideos"][0]["videoId"] == "abc"


def test_upload_form_validation(client, auth_headers):
    resp = _upload(client, auth_headers, prompt="hey", contentType="poster")
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert fields == {"prompt", "contentType"}


def test_upload_rejects_non_image(client, auth_headers):
    resp = client.post(
        "/api/upload/analyze",
        headers=auth_headers,
        data={"prompt": "Explain this", "contentType": "textbook", "title": "Doc"},
        files={"image": ("doc.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert resp.status_code == 400
    assert "Invalid file type" in resp.json()["message"]


def test_upload_upstream_failure_is_500(client, auth_headers, fake_services):
    fake_services.vision.extract_text = AsyncMock(side_effect=UpstreamServiceError("Failed to analyze image"))
    resp = _upload(client, auth_headers)
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to analyze image"}


def test_oversized_upload_is_rejected_before_reading(client, auth_headers, fake_services, monkeypatch, db_session):
    read = AsyncMock(return_value=PNG_BYTES)
    monkeypatch.setattr(UploadFile, "read", read)
    fake_services.max_upload_bytes = 16
    resp = _upload(client, auth_headers)
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("File size too large")
    read.assert_not_awaited()
    fake_services.vision.extract_text.assert_not_awaited()
    assert db_session.query(models.Analysis).count() == 0


def test_classify_upload(client, auth_headers):
    resp = client.post("/api/upload/classify", headers=auth_headers, files={"image": ("d.png", PNG_BYTES, "image/png")})
    assert resp.status_code == 200
    assert resp.json()["contentType"] == "diagram"


def test_listing_pagination_and_filters(client, auth_headers, user, make_analysis):
    for i in range(3):
        make_analysis(user, title=f"Textbook {i}")
    make_analysis(user, title="Sketch", content_type="diagram")

    resp = client.get("/api/upload/my-uploads?page=1&limit=2", headers=auth_headers)
    body = resp.json()
    assert len(body["analyses"]) == 2
    assert body["pagination"] == {"currentPage": 1, "totalPages": 2, "totalItems": 4, "itemsPerPage": 2}

    resp = client.get("/api/analysis?contentType=diagram", headers=auth_headers)
    assert [a["title"] for a in resp.json()["analyses"]] == ["Sketch"]

    resp = client.get("/api/analysis?search=textbook 1", headers=auth_headers)
    assert [a["title"] for a in resp.json()["analyses"]] == ["Textbook 1"]


def test_statistics(client, auth_headers, user, make_analysis):
    make_analysis(user)
    make_analysis(user, content_type="handwritten")

    stats = client.get("/api/analysis/statistics", headers=auth_headers).json()
    assert stats["statistics"]["totalAnalyses"] == 2
    assert stats["statistics"]["handwrittenCount"] == 1
    assert stats["statistics"]["totalQuizQuestions"] == 4
    assert len(stats["recentAnalyses"]) == 2

    topics = client.get("/api/analysis/popular-topics", headers=auth_headers).json()["topics"]
    assert topics[0]["count"] == 2


def test_other_users_analysis_is_not_found(client, auth_headers, make_user, make_analysis):
    foreign = make_analysis(make_user(email="other@example.com"))
    resp = client.get(f"/api/analysis/{foreign.id}", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Analysis not found"


def test_analysis_sub_views(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user)
    base = f"/api/analysis/{analysis.id}"
    assert len(client.get(f"{base}/quiz", headers=auth_headers).json()["quizQuestions"]) == 2
    assert client.get(f"{base}/flashcards", headers=auth_headers).json()["flashcards"][0]["front"] == "Chlorophyll"
    assert client.get(f"{base}/mindmap", headers=auth_headers).json()["mindMapData"]["central"] == "Photosynthesis"
    videos = client.get(f"{base}/videos", headers=auth_headers).json()
    assert videos["keyTopics"] == ["Photosynthesis", "Chlorophyll", "Calvin cycle"]


def test_title_update(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user)
    resp = client.put(f"/api/analysis/{analysis.id}/title", headers=auth_headers, json={"title": "ab"})
    assert resp.status_code == 400
    resp = client.put(f"/api/analysis/{analysis.id}/title", headers=auth_headers, json={"title": " Leaves "})
    assert resp.json()["analysis"] == {"id": analysis.id, "title": "Leaves"}


def test_youtube_search_requires_three_characters(client, auth_headers):
    assert client.get("/api/analysis/youtube/search?query=ab", headers=auth_headers).status_code == 400
    resp = client.get("/api/analysis/youtube/search?query=mitosis", headers=auth_headers)
    assert resp.json()["videos"][0]["videoId"] == "xyz"


def test_chat_round_trip_and_paired_delete(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user)
    resp = client.post("/api/chat/message", headers=auth_headers, json={"message": "  What is chlorophyll?  ", "analysisId": analysis.id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["response"]["role"] == "assistant"
    chat_id = body["chatId"]

    history = client.get(f"/api/chat/history/{analysis.id}", headers=auth_headers).json()
    assert history["totalMessages"] == 2
    assert history["messages"][0]["content"] == "What is chlorophyll?"

    user_message_id = history["messages"][0]["id"]
    resp = client.delete(f"/api/chat/{chat_id}/message/{user_message_id}", headers=auth_headers)
    assert resp.status_code == 200
    assert client.get(f"/api/chat/history/{analysis.id}", headers=auth_headers).json()["totalMessages"] == 0


def test_chat_messages_by_type_include_analysis_title(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user, title="Cell biology")
    client.post("/api/chat/message", headers=auth_headers, json={"message": "What is a cell?", "analysisId": analysis.id})
    body = client.get(f"/api/chat/history/{analysis.id}/messages", headers=auth_headers, params={"type": "text"}).json()
    assert body["analysisTitle"] == "Cell biology"
    assert body["totalMessages"] == 2


def test_chat_failure_still_reports_success(client, auth_headers, user, make_analysis, fake_services):
    analysis = make_analysis(user)
    fake_services.generator.chat_response = AsyncMock(side_effect=UpstreamServiceError("down"))
    resp = client.post("/api/chat/message", headers=auth_headers, json={"message": "Help", "analysisId": analysis.id})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["response"]["content"].startswith("I apologize")


def test_chat_message_validation(client, auth_headers):
    resp = client.post("/api/chat/message", headers=auth_headers, json={"message": "   ", "analysisId": 1})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "message"


def test_chat_statistics_and_mind_map(client, auth_headers, user, make_analysis, fake_services):
    analysis = make_analysis(user)
    client.post("/api/chat/message", headers=auth_headers, json={"message": "x" * 10, "analysisId": analysis.id})
    stats = client.get("/api/chat/statistics", headers=auth_headers).json()
    assert stats["statistics"]["totalChats"] == 1
    assert stats["statistics"]["avgMessagesPerChat"] == 2.0
    assert stats["recentChats"][0]["analysisTitle"] == analysis.title

    fake_services.generator.chat_response = AsyncMock(
        return_value=json.dumps({"type": "mindmap", "data": {"central": "Fresh", "branches": []}})
    )
    resp = client.post(f"/api/chat/mindmap/{analysis.id}", headers=auth_headers, json={})
    assert resp.json()["mindMapData"]["central"] == "Fresh"


def test_export_pdf_and_download(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user)
    resp = client.post(f"/api/export/pdf/{analysis.id}", headers=auth_headers)
    assert resp.status_code == 200
    url = resp.json()["downloadUrl"]

    download = client.get(url)
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert download.content.startswith(b"%PDF")

    history = client.get("/api/export/history", headers=auth_headers).json()
    assert history["availableExports"][0]["filename"] == resp.json()["filename"]

    assert client.delete(f"/api/export/{resp.json()['filename']}", headers=auth_headers).status_code == 200
    assert client.get(url).status_code == 404


def test_export_filename_with_backslash_is_rejected(client, auth_headers):
    assert client.get("/api/export/download/a%5Cb.pdf").status_code == 400
    assert client.delete("/api/export/a%5Cb.pdf", headers=auth_headers).status_code == 400


def test_export_quiz_without_questions_is_404(client, auth_headers, user, make_analysis):
    analysis = make_analysis(user, material={"summary": "s", "explanation": "e"})
    resp = client.post(f"/api/export/quiz/{analysis.id}", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "No quiz questions found for this analysis"


def test_export_multiple(client, auth_headers, user, make_analysis):
    ids = [make_analysis(user, title=t).id for t in ("One", "Two")]
    resp = client.post("/api/export/pdf/multiple", headers=auth_headers, json={"analysisIds": ids})
    assert resp.status_code == 200
    assert resp.json()["analysesCount"] == 2


def test_delete_upload(client, auth_headers, user, make_analysis, db_session):
    analysis = make_analysis(user)
    resp = client.delete(f"/api/upload/{analysis.id}", headers=auth_headers)
    assert resp.status_code == 200
    assert db_session.query(models.Analysis).count() == 0
