"""
Evaluation template handlers.

A template is a reading text plus its quiz (multiple choice questions with
four options), vocabulary pairs and sequence items.

AUTHORIZATION:
- master, admin and maestro may use every operation
- admin and maestro only touch templates of their own institution
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from database import (
    Quiz,
    QuizOption,
    QuizQuestion,
    ReadingText,
    SequenceItem,
    VocabularyPair,
)
from .authorization import Action, get_authorization_service
from .context import CallerContext, CallerProfile
from .exceptions import InvalidInput, Unauthorized
from .identity import require_profile
from .store import fetch_visible, store_operation
from .validation import check_grade, require_text

logger = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4
MAX_QUESTIONS = 8
DIFFICULTIES = ("facil", "medio", "dificil")
TOPIC_MIN_LENGTH = 3
TOPIC_MAX_LENGTH = 80
CONTENT_MIN_LENGTH = 10


def _load_template(
    db: Session,
    profile: CallerProfile,
    text_id: str,
    action: Action,
    hide: bool = False,
) -> ReadingText:
    text_row = fetch_visible(db, ReadingText, text_id, "Template")
    get_authorization_service().enforce_institution(
        profile, text_row.institution_id, action, hide=hide, resource="Template"
    )
    return text_row


def _active_quiz(db: Session, text_id: str, lock: bool = False) -> Optional[Quiz]:
    query = (
        db.query(Quiz)
        .filter(Quiz.text_id == text_id)
        .filter(Quiz.visible())
        .order_by(Quiz.created_at, Quiz.id)
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def _validate_question(prompt: Any, options: Any, answer_index: Any) -> tuple:
    prompt = require_text(prompt, "prompt", "Prompt")
    if not isinstance(options, (list, tuple)) or len(options) != OPTIONS_PER_QUESTION:
        raise InvalidInput(f"Exactly {OPTIONS_PER_QUESTION} options are required", ["options"])
    if not all(isinstance(option, str) for option in options):
        raise InvalidInput("Options must be strings", ["options"])
    if isinstance(answer_index, bool) or not isinstance(answer_index, int) \
            or not 0 <= answer_index < OPTIONS_PER_QUESTION:
        raise InvalidInput(f"answer_index must be between 0 and {OPTIONS_PER_QUESTION - 1}", ["answer_index"])
    return prompt, [option.strip() for option in options], answer_index


def _insert_question(
    db: Session,
    quiz: Quiz,
    prompt: str,
    options: Sequence[str],
    answer_index: int,
    actor_id: str,
) -> QuizQuestion:
    last_order = (
        db.query(func.max(QuizQuestion.order_index))
        .filter(QuizQuestion.quiz_id == quiz.id)
        .scalar()
    ) or 0
    question = QuizQuestion(
        quiz_id=quiz.id,
        prompt=prompt,
        order_index=last_order + 1,
        created_by=actor_id,
    )
    db.add(question)
    db.flush()
    for index, option_text in enumerate(options):
        db.add(QuizOption(
            question_id=question.id,
            option_text=option_text,
            order_index=index + 1,
            is_correct=index == answer_index,
            created_by=actor_id,
        ))
    quiz.question_count = (quiz.question_count or 0) + 1
    quiz.updated_by = actor_id
    return question


def list_templates(
    db: Session,
    caller: CallerContext,
    institution_id: Optional[str] = None,
    grade_id: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    List templates, newest first, with their quiz id and question count.

    A master may filter by institution; everyone else sees their own.
    """
    profile = require_profile(db, caller, Action.TEMPLATES_LIST)
    if profile.is_master:
        target = institution_id
    else:
        if not profile.institution_id:
            raise Unauthorized(
                "Profile has no institution assigned",
                user_id=profile.id,
                action=Action.TEMPLATES_LIST.value,
            )
        target = get_authorization_service().scoped_institution(profile, institution_id, Action.TEMPLATES_LIST)
    if grade_id is not None:
        grade_id = check_grade(grade_id)

    query = (
        db.query(ReadingText, Quiz)
        .outerjoin(Quiz, and_(Quiz.text_id == ReadingText.id, Quiz.visible()))
        .filter(ReadingText.visible())
    )
    if target:
        query = query.filter(ReadingText.institution_id == target)
    if grade_id is not None:
        query = query.filter(ReadingText.grade_id == grade_id)

    with store_operation(db, "listing templates"):
        rows = query.order_by(ReadingText.created_at.desc(), ReadingText.id).all()

    templates: List[Dict[str, Any]] = []
    seen = set()
    for text_row, quiz in rows:
        if text_row.id in seen:
            continue
        seen.add(text_row.id)
        templates.append({
            "id": text_row.id,
            "title": text_row.title or "(Sin título)",
            "topic": text_row.topic or "",
            "difficulty": text_row.difficulty or "",
            "grade_id": text_row.grade_id,
            "institution_id": text_row.institution_id,
            "created_at": text_row.created_at.isoformat() if text_row.created_at else None,
            "quiz_id": quiz.id if quiz else None,
            "question_count": quiz.question_count if quiz else 0,
        })
    return templates


def get_template(db: Session, caller: CallerContext, text_id: str) -> Dict[str, Any]:
    """
    Full template: text, quiz questions with options, vocabulary and sequence.

    Templates of another institution are reported as not found.
    """
    profile = require_profile(db, caller, Action.TEMPLATE_READ)
    text_row = _load_template(db, profile, text_id, Action.TEMPLATE_READ, hide=True)

    with store_operation(db, "loading template"):
        quiz = _active_quiz(db, text_row.id)
        questions = []
        if quiz:
            questions = (
                db.query(QuizQuestion)
                .filter(QuizQuestion.quiz_id == quiz.id)
                .order_by(QuizQuestion.order_index)
                .all()
            )
        vocabulary = (
            db.query(VocabularyPair)
            .filter(VocabularyPair.text_id == text_row.id)
            .filter(VocabularyPair.visible())
            .order_by(VocabularyPair.order_index)
            .all()
        )
        sequence = (
            db.query(SequenceItem)
            .filter(SequenceItem.text_id == text_row.id)
            .filter(SequenceItem.visible())
            .order_by(SequenceItem.correct_order)
            .all()
        )

        return {
            "text": text_row.to_dict(),
            "quiz_id": quiz.id if quiz else None,
            "questions": [
                {
                    "id": question.id,
                    "prompt": question.prompt,
                    "order_index": question.order_index,
                    "options": [option.option_text for option in question.options],
                    "answer_index": next(
                        (i for i, option in enumerate(question.options) if option.is_correct), None
                    ),
                }
                for question in questions
            ],
            "vocabulary": [
                {"id": pair.id, "word": pair.word, "definition": pair.definition, "order_index": pair.order_index}
                for pair in vocabulary
            ],
            "sequence": [
                {"id": item.id, "text": item.text, "correct_order": item.correct_order}
                for item in sequence
            ],
        }


def create_template(
    db: Session,
    caller: CallerContext,
    title: Any,
    topic: Any,
    content: Any,
    grade_id: Any,
    difficulty: Any,
    questions: Optional[List[Dict[str, Any]]] = None,
    institution_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a template, optionally with its first questions.

    Args:
        db: Database session
        caller: Calling user
        title: Template title
        topic: Topic, 3 to 80 characters
        content: Reading text, at least 10 characters
        grade_id: School grade, 1 to 3
        difficulty: One of facil, medio, dificil
        questions: Optional list of ``{prompt, options, answer_index}``
        institution_id: Defaults to the caller's institution

    Returns:
        ``{id, quiz_id, question_count}``

    Raises:
        InvalidInput: Any field out of range
    """
    profile = require_profile(db, caller, Action.TEMPLATE_CREATE)

    title = require_text(title, "title", "Title")
    topic = require_text(topic, "topic", "Topic")
    if not TOPIC_MIN_LENGTH <= len(topic) <= TOPIC_MAX_LENGTH:
        raise InvalidInput(
            f"Topic must have between {TOPIC_MIN_LENGTH} and {TOPIC_MAX_LENGTH} characters", ["topic"]
        )
    content = require_text(content, "content", "Content")
    if len(content) < CONTENT_MIN_LENGTH:
        raise InvalidInput(f"Content must have at least {CONTENT_MIN_LENGTH} characters", ["content"])
    grade_id = check_grade(grade_id)
    if difficulty not in DIFFICULTIES:
        raise InvalidInput(f"difficulty must be one of {', '.join(DIFFICULTIES)}", ["difficulty"])

    questions = questions or []
    if len(questions) > MAX_QUESTIONS:
        raise InvalidInput(f"A template holds at most {MAX_QUESTIONS} questions", ["questions"])
    validated = [
        _validate_question(q.get("prompt"), q.get("options"), q.get("answer_index"))
        for q in questions
    ]

    target = get_authorization_service().scoped_institution(profile, institution_id, Action.TEMPLATE_CREATE)

    text_row = ReadingText(
        institution_id=target,
        grade_id=grade_id,
        title=title,
        topic=topic,
        content=content,
        difficulty=difficulty,
        created_by=profile.id,
        updated_by=profile.id,
    )
    with store_operation(db, "creating template"):
        db.add(text_row)
        db.flush()
        quiz = None
        if validated:
            quiz = Quiz(
                institution_id=target,
                text_id=text_row.id,
                grade_id=grade_id,
                question_count=0,
                created_by=profile.id,
            )
            db.add(quiz)
            db.flush()
            for prompt, options, answer_index in validated:
                _insert_question(db, quiz, prompt, options, answer_index, profile.id)
        db.commit()

    logger.info("Template %s created by %s", text_row.id, profile.id)
    return {
        "id": text_row.id,
        "quiz_id": quiz.id if quiz else None,
        "question_count": quiz.question_count if quiz else 0,
    }


def delete_template(db: Session, caller: CallerContext, text_id: str) -> Dict[str, Any]:
    """Soft-delete a template together with its quiz."""
    profile = require_profile(db, caller, Action.TEMPLATE_DELETE)
    text_row = _load_template(db, profile, text_id, Action.TEMPLATE_DELETE)

    with store_operation(db, "deleting template"):
        text_row.soft_delete()
        text_row.updated_by = profile.id
        for quiz in db.query(Quiz).filter(Quiz.text_id == text_row.id).filter(Quiz.visible()).all():
            quiz.soft_delete()
            quiz.updated_by = profile.id
        db.commit()

    logger.info("Template %s deleted by %s", text_id, profile.id)
    return {"ok": True, "id": text_id}


def add_question(
    db: Session,
    caller: CallerContext,
    text_id: str,
    prompt: Any,
    options: Any,
    answer_index: Any,
) -> Dict[str, Any]:
    """
    Append a multiple choice question to a template's quiz.

    The quiz is created with the first question.

    Raises:
        InvalidInput: Bad question, or the quiz is already full
    """
    profile = require_profile(db, caller, Action.TEMPLATE_ADD_QUESTION)
    prompt, options, answer_index = _validate_question(prompt, options, answer_index)
    text_row = _load_template(db, profile, text_id, Action.TEMPLATE_ADD_QUESTION)

    with store_operation(db, "adding question"):
        quiz = _active_quiz(db, text_row.id, lock=True)
        if quiz is None:
            quiz = Quiz(
                institution_id=text_row.institution_id,
                text_id=text_row.id,
                grade_id=text_row.grade_id,
                question_count=0,
                created_by=profile.id,
            )
            db.add(quiz)
            db.flush()
        elif (quiz.question_count or 0) >= MAX_QUESTIONS:
            db.rollback()
            raise InvalidInput(f"A template holds at most {MAX_QUESTIONS} questions", ["prompt"])

        question = _insert_question(db, quiz, prompt, options, answer_index, profile.id)
        db.commit()

    return {
        "ok": True,
        "quiz_id": quiz.id,
        "question_id": question.id,
        "question_count": quiz.question_count,
    }


def add_vocabulary_pair(
    db: Session,
    caller: CallerContext,
    text_id: str,
    word: Any,
    definition: Any,
) -> Dict[str, Any]:
    """Append a word/definition pair to a template."""
    profile = require_profile(db, caller, Action.TEMPLATE_ADD_VOCABULARY)
    word = require_text(word, "word", "Word")
    definition = require_text(definition, "definition", "Definition")
    text_row = _load_template(db, profile, text_id, Action.TEMPLATE_ADD_VOCABULARY)

    with store_operation(db, "adding vocabulary pair"):
        last_order = (
            db.query(func.max(VocabularyPair.order_index))
            .filter(VocabularyPair.text_id == text_row.id)
            .scalar()
        ) or 0
        pair = VocabularyPair(
            text_id=text_row.id,
            word=word,
            definition=definition,
            order_index=last_order + 1,
            created_by=profile.id,
        )
        db.add(pair)
        db.commit()
        db.refresh(pair)

    return {"ok": True, "id": pair.id, "order_index": pair.order_index}


def add_sequence_item(
    db: Session,
    caller: CallerContext,
    text_id: str,
    text: Any,
    correct_order: Any,
) -> Dict[str, Any]:
    """Add an event to a template's sequencing exercise."""
    profile = require_profile(db, caller, Action.TEMPLATE_ADD_SEQUENCE)
    text = require_text(text, "text", "Text")
    if isinstance(correct_order, bool) or not isinstance(correct_order, int) or correct_order < 1:
        raise InvalidInput("correct_order must be a positive integer", ["correct_order"])
    text_row = _load_template(db, profile, text_id, Action.TEMPLATE_ADD_SEQUENCE)

    item = SequenceItem(
        text_id=text_row.id,
        text=text,
        correct_order=correct_order,
        created_by=profile.id,
    )
    with store_operation(db, "adding sequence item"):
        db.add(item)
        db.commit()
        db.refresh(item)

    return {"ok": True, "id": item.id, "correct_order": item.correct_order}
