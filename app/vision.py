import logging
import re
from typing import Iterable

from app.errors import UpstreamServiceError
from app.schemas import Annotation, ExtractedText, ImageAnnotations

logger = logging.getLogger(__name__)

HANDWRITING_INDICATORS = ("handwriting", "writing", "pen", "pencil", "notebook")
TEXTBOOK_INDICATORS = ("book", "page", "document", "text")
DIAGRAM_INDICATORS = ("diagram", "chart", "graph", "illustration", "drawing")
INFORMAL_MARKERS = ("my", "i think", "note:", "remember", "??", "todo")
FORMAL_MARKERS = ("chapter", "definition", "theorem", "figure", "table", "reference")

# Below this many characters the image is treated as mostly visual
LIMITED_TEXT_CHARS = 100


def calculate_confidence(text: str) -> float:
    if not text:
        return 0.0
    confidence = 0.5
    if len(text) > 50:
        confidence += 0.2
    if len(text) > 200:
        confidence += 0.2
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    if len(sentences) > 1:
        confidence += 0.1
    return round(min(confidence, 1.0), 2)


def _has_indicator(labels: Iterable[Annotation], indicators: tuple[str, ...]) -> bool:
    return any(ind in label.name.lower() for label in labels for ind in indicators)


def guess_content_type_from_text(text: str) -> str:
    if not text or len(text) < 10:
        return "diagram"
    lowered = text.lower()
    if any(marker in lowered for marker in INFORMAL_MARKERS):
        return "handwritten"
    if any(marker in lowered for marker in FORMAL_MARKERS):
        return "textbook"
    return "textbook"


def determine_content_type(text: str, labels: list[Annotation], objects: list[Annotation]) -> str:
    """Best-effort classification of an image into handwritten/textbook/diagram."""
    text = text or ""
    has_limited_text = len(text) < LIMITED_TEXT_CHARS
    if _has_indicator(labels, DIAGRAM_INDICATORS) or (objects and has_limited_text):
        return "diagram"
    if _has_indicator(labels, HANDWRITING_INDICATORS):
        return "handwritten"
    if _has_indicator(labels, TEXTBOOK_INDICATORS) or len(text) > LIMITED_TEXT_CHARS:
        return "textbook"
    return guess_content_type_from_text(text)


class VisionService:
    """Text-extraction collaborator backed by Google Cloud Vision."""

    def __init__(self, client=None):
        self._client = client

    def _get_client(self):
        if self._client is None:
            from google.cloud import vision

            self._client = vision.ImageAnnotatorAsyncClient()
        return self._client

    async def _annotate(self, image_bytes: bytes, feature_types: list):
        from google.cloud import vision

        client = self._get_client()
        image = vision.Image(content=image_bytes)
        features = [vision.Feature(type_=t) for t in feature_types]
        request = vision.AnnotateImageRequest(image=image, features=features)
        try:
            response = await client.batch_annotate_images(requests=[request])
        except Exception as e:
            logger.error("Cloud Vision request failed: %s", e)
            raise UpstreamServiceError("Failed to analyze image") from e
        annotation = response.responses[0]
        if annotation.error.message:
            logger.error("Cloud Vision API error: %s", annotation.error.message)
            raise UpstreamServiceError("Failed to analyze image")
        return annotation

    async def extract_text(self, image_bytes: bytes) -> ExtractedText:
        from google.cloud import vision

        annotation = await self._annotate(image_bytes, [vision.Feature.Type.TEXT_DETECTION])
        text = annotation.text_annotations[0].description if annotation.text_annotations else ""
        return ExtractedText(text=text, confidence=calculate_confidence(text))

    async def analyze_image(self, image_bytes: bytes) -> ImageAnnotations:
        from google.cloud import vision

        annotation = await self._annotate(
            image_bytes,
            [
                vision.Feature.Type.TEXT_DETECTION,
                vision.Feature.Type.OBJECT_LOCALIZATION,
                vision.Feature.Type.LABEL_DETECTION,
            ],
        )
        text = annotation.text_annotations[0].description if annotation.text_annotations else ""
        objects = [Annotation(name=o.name, confidence=o.score) for o in annotation.localized_object_annotations]
        labels = [Annotation(name=l.description, confidence=l.score) for l in annotation.label_annotations]
        return ImageAnnotations(
            text=text,
            labels=labels,
            objects=objects,
            content_type=determine_content_type(text, labels, objects),
        )
