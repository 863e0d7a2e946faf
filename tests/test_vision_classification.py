from unittest.mock import AsyncMock, MagicMock

import pytest

from app.errors import UpstreamServiceError
from app.schemas import Annotation
from app.vision import (
    VisionService,
    calculate_confidence,
    determine_content_type,
    guess_content_type_from_text,
)

LONG_TEXT = "Chapter 3. The cell membrane regulates what enters and leaves the cell. " * 3


def test_confidence_grows_with_text():
    assert calculate_confidence("") == 0.0
    assert calculate_confidence("short") == 0.5
    assert calculate_confidence("x" * 60) == 0.7
    assert calculate_confidence(LONG_TEXT) == 1.0


def test_diagram_label_wins():
    labels = [Annotation(name="Diagram", confidence=0.9), Annotation(name="Handwriting", confidence=0.8)]
    assert determine_content_type(LONG_TEXT, labels, []) == "diagram"


def test_objects_with_little_text_is_diagram():
    assert determine_content_type("A -> B", [], [Annotation(name="Arrow", confidence=0.7)]) == "diagram"


def test_handwriting_label():
    assert determine_content_type("some notes", [Annotation(name="Handwriting")], []) == "handwritten"


def test_long_text_is_textbook():
    assert determine_content_type(LONG_TEXT, [], []) == "textbook"


def test_text_heuristics_fallback():
    assert determine_content_type("", [], []) == "diagram"
    assert determine_content_type("remember the mitosis steps", [], []) == "handwritten"
    assert guess_content_type_from_text("Definition of a cell wall") == "textbook"


def _vision_response(text="", error_message=""):
    annotation = MagicMock()
    annotation.error.message = error_message
    annotation.text_annotations = [MagicMock(description=text)] if text else []
    label = MagicMock(description="Chart", score=0.9)
    annotation.label_annotations = [label]
    annotation.localized_object_annotations = []
    response = MagicMock()
    response.responses = [annotation]
    return response


async def test_extract_text_returns_text_and_confidence():
    client = MagicMock()
    client.batch_annotate_images = AsyncMock(return_value=_vision_response(LONG_TEXT))
    result = await VisionService(client=client).extract_text(b"img")
    assert result.text == LONG_TEXT
    assert result.confidence == 1.0


async def test_analyze_image_classifies_from_labels():
    client = MagicMock()
    client.batch_annotate_images = AsyncMock(return_value=_vision_response("x"))
    result = await VisionService(client=client).analyze_image(b"img")
    assert result.content_type == "diagram"
    assert result.labels[0].name == "Chart"


async def test_api_error_is_upstream_failure():
    client = MagicMock()
    client.batch_annotate_images = AsyncMock(return_value=_vision_response(error_message="quota exceeded"))
    with pytest.raises(UpstreamServiceError):
        await VisionService(client=client).extract_text(b"img")


async def test_transport_error_is_upstream_failure():
    client = MagicMock()
    client.batch_annotate_images = AsyncMock(side_effect=RuntimeError("unavailable"))
    with pytest.raises(UpstreamServiceError):
        await VisionService(client=client).analyze_image(b"img")
