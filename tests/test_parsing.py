import json

from app.ai_provider import (
    UNPARSABLE_EXPLANATION,
    UNPARSABLE_SUMMARY,
    parse_chat_reply,
    parse_study_material,
    strip_code_fence,
)
from app.schemas import MultipleChoiceQuestion, ShortAnswerQuestion
from factories import MATERIAL


def test_strip_code_fence_removes_json_fence():
    raw = '```json\n{"summary": "x"}\n```'
    assert strip_code_fence(raw) == '{"summary": "x"}'


def test_strip_code_fence_leaves_plain_text():
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_parse_full_material_inside_fence():
    result = parse_study_material("```json\n" + json.dumps(MATERIAL) + "\n```")
    material = result.material
    assert material.summary == MATERIAL["summary"]
    assert len(material.quiz_questions) == 2
    assert isinstance(material.quiz_questions[0], MultipleChoiceQuestion)
    assert isinstance(material.quiz_questions[1], ShortAnswerQuestion)
    assert material.quiz_questions[0].correct == 1
    assert material.flashcards[0].front == "Chlorophyll"
    assert material.key_topics == ["Photosynthesis", "Chlorophyll", "Calvin cycle"]
    assert material.mind_map_data.central == "Photosynthesis"


def test_missing_fields_get_defaults():
    result = parse_study_material(json.dumps({"summary": "Only a summary"}))
    material = result.material
    assert material.summary == "Only a summary"
    assert material.explanation == "Unable to generate explanation"
    assert material.quiz_questions == []
    assert material.flashcards == []
    assert material.key_topics == []
    assert material.mind_map_data.central == "Main Topic"
    assert material.mind_map_data.branches == []


def test_unparsable_output_yields_default_analysis():
    result = parse_study_material("Sorry, I cannot help with that.")
    assert result.material.summary == UNPARSABLE_SUMMARY
    assert result.material.explanation == UNPARSABLE_EXPLANATION
    assert result.extracted_text == ""


def test_json_array_is_not_a_material_object():
    result = parse_study_material("[1, 2, 3]")
    assert result.material.summary == UNPARSABLE_SUMMARY


def test_malformed_quiz_items_and_flashcards_are_dropped():
    data = {
        **MATERIAL,
        "quizQuestions": [
            {"type": "mcq", "question": "Out of range", "options": ["a", "b"], "correct": 5},
            {"type": "essay", "question": "Unknown kind"},
            {"type": "short_answer", "question": "Kept", "answer": "yes"},
        ],
        "flashcards": [{"front": "only front"}, {"front": "F", "back": "B"}],
    }
    material = parse_study_material(json.dumps(data)).material
    assert [q.question for q in material.quiz_questions] == ["Kept"]
    assert [(c.front, c.back) for c in material.flashcards] == [("F", "B")]


def _quiz(*items):
    data = {**MATERIAL, "quizQuestions": list(items)}
    return parse_study_material(json.dumps(data)).material.quiz_questions


def test_quiz_item_without_type_is_inferred():
    mcq, short = _quiz(
        {"question": "Capital of France?", "options": ["Berlin", "Paris"], "correct": 1},
        {"question": "2 + 2?", "answer": "4"},
    )
    assert isinstance(mcq, MultipleChoiceQuestion)
    assert mcq.correct == 1
    assert isinstance(short, ShortAnswerQuestion)
    assert short.answer == "4"


def test_quiz_correct_letter_becomes_index():
    (question,) = _quiz(
        {"type": "mcq", "question": "Pick B", "options": ["w", "x", "y"], "correct": "B"},
    )
    assert question.correct == 1


def test_quiz_correct_option_text_becomes_index():
    (question,) = _quiz(
        {"type": "multiple_choice", "question": "Largest?", "options": ["Mars", "Jupiter"], "correct": "jupiter"},
    )
    assert isinstance(question, MultipleChoiceQuestion)
    assert question.correct == 1


def test_true_false_becomes_two_option_mcq():
    first, second = _quiz(
        {"type": "true_false", "question": "Water is wet.", "correct": True},
        {"type": "true_false", "question": "Fire is cold.", "answer": "false"},
    )
    assert first.options == ["True", "False"]
    assert first.correct == 0
    assert second.correct == 1


def test_mixed_quiz_shapes_are_all_kept():
    questions = _quiz(
        {"question": "Q1", "options": ["a", "b"], "correct": 0},
        {"type": "mcq", "question": "Q2", "options": ["a", "b"], "correct": "B"},
        {"type": "true_false", "question": "Q3", "correct": "True"},
        {"question": "Q4", "answer": "yes"},
    )
    assert [q.question for q in questions] == ["Q1", "Q2", "Q3", "Q4"]


def test_unusable_quiz_items_are_still_dropped():
    questions = _quiz(
        {"question": "No options or answer"},
        {"type": "mcq", "question": "Letter out of range", "options": ["a", "b"], "correct": "D"},
        {"question": "Unmatched text", "options": ["a", "b"], "correct": "neither"},
        "not an object",
    )
    assert questions == []


def test_extracted_text_is_kept_for_image_analysis():
    result = parse_study_material(json.dumps({**MATERIAL, "extractedText": "H2O + CO2"}))
    assert result.extracted_text == "H2O + CO2"


def test_chat_reply_mind_map():
    raw = json.dumps({"type": "mindmap", "data": {"central": "Cells", "branches": [{"name": "Parts", "subtopics": ["Nucleus"]}]}})
    reply = parse_chat_reply(raw)
    assert reply.type == "mindmap"
    assert reply.mind_map.central == "Cells"
    assert reply.content == raw


def test_chat_reply_plain_text():
    reply = parse_chat_reply("The nucleus stores DNA.")
    assert reply.type == "text"
    assert reply.mind_map is None


def test_chat_reply_json_without_mindmap_type_is_text():
    reply = parse_chat_reply('{"type": "note", "data": {}}')
    assert reply.type == "text"
