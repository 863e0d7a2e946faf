import json
import logging
import re
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from app import config
from app.errors import UpstreamServiceError
from app.schemas import (
    ChatReply,
    Flashcard,
    GeneratedAnalysis,
    MindMap,
    QuizQuestion,
    StudyMaterial,
)

logger = logging.getLogger(__name__)

# Field defaults substituted when the model omits (or mangles) a required field
FIELD_DEFAULTS = {
    "summary": "Unable to generate summary",
    "explanation": "Unable to generate explanation",
    "quizQuestions": [],
    "flashcards": [],
    "keyTopics": [],
}
REQUIRED_FIELDS = tuple(FIELD_DEFAULTS)

# Used when the output is not a JSON object at all
UNPARSABLE_SUMMARY = "Unable to analyze content"
UNPARSABLE_EXPLANATION = "Unable to provide explanation"

_QUIZ_ADAPTER = TypeAdapter(QuizQuestion)
MCQ_TYPES = ("mcq", "multiple_choice", "multiplechoice")
TRUE_FALSE_TYPES = ("true_false", "truefalse", "true/false", "boolean")
TRUE_FALSE_OPTIONS = ("True", "False")
_FENCE_OPEN = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")

MATERIAL_SCHEMA = """
{
  "summary": "Concise summary of the content",
  "explanation": "Detailed explanation of key concepts in simple language",
  "quizQuestions": [
    {"type": "mcq", "question": "Question text", "options": ["A", "B", "C", "D"], "correct": 0},
    {"type": "short_answer", "question": "Question text", "answer": "Expected answer"}
  ],
  "flashcards": [{"front": "Question or term", "back": "Answer or definition"}],
  "keyTopics": ["topic1", "topic2", "topic3"],
  "mindMapData": {
    "central": "Main topic",
    "branches": [{"name": "Branch 1", "subtopics": ["subtopic1", "subtopic2"]}]
  }
}
"""


def strip_code_fence(raw: str) -> str:
    """Remove a leading ```/```json fence and the matching trailing fence."""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def default_analysis() -> GeneratedAnalysis:
    return GeneratedAnalysis(
        extracted_text="",
        material=StudyMaterial(
            summary=UNPARSABLE_SUMMARY,
            explanation=UNPARSABLE_EXPLANATION,
        ),
    )


def _text_field(data: dict, key: str) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return FIELD_DEFAULTS[key]


def _list_field(data: dict, key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) and value else []


def _answer_index(correct: Any, options: list) -> Optional[int]:
    """Map a letter ("B"), a digit string or an option's own text onto an option index."""
    if isinstance(correct, bool):
        correct = str(correct)
    if isinstance(correct, int):
        return correct
    if not isinstance(correct, str):
        return None
    value = correct.strip()
    if value.isdigit():
        return int(value)
    labels = [str(option).strip().lower() for option in options]
    if value.lower() in labels:
        return labels.index(value.lower())
    if len(value) == 1 and value.isalpha():
        return ord(value.upper()) - ord("A")
    return None


def _normalize_quiz_item(item: Any) -> Any:
    """Coerce the shapes Gemini actually emits into the tagged quiz union."""
    if not isinstance(item, dict):
        return item
    item = dict(item)
    kind = str(item.get("type") or "").strip().lower().replace("-", "_")

    if kind in TRUE_FALSE_TYPES:
        item["type"] = "mcq"
        if not isinstance(item.get("options"), list) or not item["options"]:
            item["options"] = list(TRUE_FALSE_OPTIONS)
        if "correct" not in item and "answer" in item:
            item["correct"] = item["answer"]
    elif kind in MCQ_TYPES:
        item["type"] = "mcq"
    elif kind != "short_answer":
        if isinstance(item.get("options"), list):
            item["type"] = "mcq"
        elif "answer" in item:
            item["type"] = "short_answer"

    if item.get("type") == "mcq":
        index = _answer_index(item.get("correct"), item.get("options") or [])
        if index is not None:
            item["correct"] = index
    elif item.get("type") == "short_answer":
        if "answer" not in item and isinstance(item.get("correct"), str):
            item["answer"] = item["correct"]
        elif isinstance(item.get("answer"), (int, float)):
            item["answer"] = str(item["answer"])
    return item


def _quiz_items(items: list) -> list:
    valid = []
    for item in items:
        try:
            valid.append(_QUIZ_ADAPTER.validate_python(_normalize_quiz_item(item)))
        except ValidationError:
            logger.debug("Dropping malformed quiz item: %r", item)
    return valid


def _flashcards(items: list) -> list[Flashcard]:
    valid = []
    for item in items:
        try:
            valid.append(Flashcard.model_validate(item))
        except ValidationError:
            logger.debug("Dropping malformed flashcard: %r", item)
    return valid


def _mind_map(value: Any) -> MindMap:
    if isinstance(value, dict):
        try:
            return MindMap.model_validate(value)
        except ValidationError:
            pass
    return MindMap()


def parse_study_material(raw: str) -> GeneratedAnalysis:
    """Turn untrusted model output into a complete study-material record.

    Never raises: unparsable output yields the default analysis and missing
    fields are filled with their documented defaults.
    """
    try:
        data = json.loads(strip_code_fence(raw))
    except (TypeError, ValueError) as e:
        logger.warning("Generation output is not valid JSON: %s", e)
        return default_analysis()
    if not isinstance(data, dict):
        logger.warning("Generation output is JSON but not an object")
        return default_analysis()

    material = StudyMaterial(
        summary=_text_field(data, "summary"),
        explanation=_text_field(data, "explanation"),
        quiz_questions=_quiz_items(_list_field(data, "quizQuestions")),
        flashcards=_flashcards(_list_field(data, "flashcards")),
        key_topics=[str(t).strip() for t in _list_field(data, "keyTopics") if isinstance(t, (str, int, float)) and str(t).strip()],
        mind_map_data=_mind_map(data.get("mindMapData")),
    )
    extracted = data.get("extractedText")
    return GeneratedAnalysis(
        extracted_text=extracted if isinstance(extracted, str) else "",
        material=material,
    )


def parse_chat_reply(raw: str) -> ChatReply:
    """Classify a tutor reply as a mind map or plain text."""
    content = raw or ""
    try:
        data = json.loads(strip_code_fence(content))
    except (TypeError, ValueError):
        return ChatReply(type="text", content=content)
    if isinstance(data, dict) and data.get("type") == "mindmap" and isinstance(data.get("data"), dict):
        try:
            mind_map = MindMap.model_validate(data["data"])
        except ValidationError:
            return ChatReply(type="text", content=content)
        return ChatReply(type="mindmap", content=content, mind_map=mind_map)
    return ChatReply(type="text", content=content)


class GeminiProvider:
    """Generative-content collaborator backed by Gemini.

    The SDK model is created on first use so that constructing the provider at
    start-up never needs credentials.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model_name = model_name or config.GEMINI_MODEL
        self._model = None

    def _get_model(self):
        if self._model is None:
            # Lazy imports to avoid hard dependency at import time
            import google.generativeai as genai

            if not self.api_key:
                raise UpstreamServiceError("GOOGLE_API_KEY is not configured")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    @staticmethod
    def _safety_settings():
        from google.generativeai.types import HarmCategory, HarmBlockThreshold

        return {
            HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
            HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_ONLY_HIGH,
            HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
            HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_ONLY_HIGH,
        }

    @staticmethod
    def _response_text(response) -> str:
        try:
            text = (getattr(response, "text", None) or "").strip()
        except ValueError:
            # .text raises when the candidate was blocked
            text = ""
        if text:
            return text
        for c in getattr(response, "candidates", None) or []:
            parts = getattr(getattr(c, "content", None), "parts", None) or []
            for p in parts:
                t = getattr(p, "text", "")
                if t:
                    return t.strip()
        return ""

    async def generate(self, prompt: str, image: Optional[dict] = None) -> str:
        model = self._get_model()
        contents: list = [prompt]
        if image is not None:
            contents.append(image)
        try:
            response = await model.generate_content_async(contents, safety_settings=self._safety_settings())
        except UpstreamServiceError:
            raise
        except Exception as e:
            logger.error("Gemini API error: %s", e)
            raise UpstreamServiceError("Failed to generate content with Gemini API") from e
        text = self._response_text(response)
        if not text:
            feedback = getattr(response, "prompt_feedback", None)
            logger.error("Gemini returned no text. Feedback: %s", feedback)
            raise UpstreamServiceError("Gemini returned an empty response")
        return text

    async def analyze_text(self, extracted_text: str, prompt: str, content_type: str) -> str:
        analysis_prompt = f"""
        Content Type: {content_type}
        User Request: {prompt}
        Extracted Text: {extracted_text}

        Based on the above content, provide a comprehensive analysis in the following JSON format:
        {MATERIAL_SCHEMA}
        Ensure the response is valid JSON format only.
        """
        return await self.generate(analysis_prompt)

    async def analyze_image(self, image_bytes: bytes, mime_type: str, prompt: str, content_type: str) -> str:
        analysis_prompt = f"""
        Content Type: {content_type}
        User Request: {prompt}

        Analyze this {content_type} image and provide a comprehensive analysis in the following JSON format.
        Also include an "extractedText" field with all text found in the image.
        {MATERIAL_SCHEMA}
        Ensure the response is valid JSON format only. For diagrams, focus on explaining the visual elements and their relationships.
        """
        image = {"mime_type": mime_type, "data": image_bytes}
        return await self.generate(analysis_prompt, image=image)

    async def chat_response(self, question: str, material: StudyMaterial, extracted_text: str) -> str:
        chat_prompt = f"""
        You are an AI tutor helping a student understand their study material.

        Original Content: {extracted_text}
        Previous Analysis: {material.model_dump_json(by_alias=True)}
        Student Question: {question}

        Provide a helpful, clear answer to the student's question based on the uploaded content and analysis.
        If the question is about creating a mind map, respond ONLY with JSON in this format:
        {{
          "type": "mindmap",
          "data": {{
            "central": "Main topic",
            "branches": [{{"name": "Branch 1", "subtopics": ["subtopic1", "subtopic2"]}}]
          }}
        }}

        Otherwise, provide a direct text response.
        """
        return await self.generate(chat_prompt)
