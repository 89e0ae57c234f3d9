"""
Pydantic schemas for platform API responses.

Payloads are validated here, at the client boundary, and converted into the
dataclasses in ``models`` so the rest of the package never sees raw dicts.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import (
    Attempt,
    AttemptSummary,
    AnswerResult,
    Question,
    QuestionSet,
    QuestionSetKind,
    QuestionType,
    ReviewedAnswer,
)


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


class ApiModel(BaseModel):
    """Base for response payloads: unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class QuestionPayload(ApiModel):
    """A question as served to students."""

    id: str = Field(..., min_length=1)
    questionText: str = ""
    questionType: QuestionType = QuestionType.SHORT_ANSWER
    options: Dict[str, str] = Field(default_factory=dict)
    correctAnswer: Optional[str] = None
    points: float = 1
    order: int = 0

    @field_validator('options', mode='before')
    @classmethod
    def options_as_mapping(cls, value):
        # Some endpoints send null or a list for short-answer questions
        if not isinstance(value, dict):
            return {}
        return {str(k): "" if v is None else str(v) for k, v in value.items()}

    def to_model(self) -> Question:
        return Question(
            id=self.id,
            text=self.questionText,
            question_type=self.questionType,
            options=dict(self.options),
            order=self.order,
            points=int(self.points),
            correct_answer=self.correctAnswer,
        )


class TestPayload(ApiModel):
    """``GET /students/test/{id}``. Duration is expressed in minutes."""

    id: str = Field(..., min_length=1)
    title: str = ""
    description: Optional[str] = None
    isTimed: bool = False
    duration: Optional[int] = None
    questions: List[QuestionPayload] = Field(default_factory=list)

    def to_model(self) -> QuestionSet:
        duration_seconds = self.duration * 60 if self.isTimed and self.duration else None
        return QuestionSet(
            id=self.id,
            kind=QuestionSetKind.TEST,
            title=self.title,
            questions=sorted((q.to_model() for q in self.questions), key=lambda q: q.order),
            duration_seconds=duration_seconds,
            description=self.description or "",
        )


class PracticePayload(ApiModel):
    """``GET /practice/student/{id}``."""

    id: str = Field(..., min_length=1)
    name: str = ""
    subjectName: str = ""
    classLabel: str = ""

    def to_model(self, questions: List[QuestionPayload]) -> QuestionSet:
        description = " · ".join(part for part in (self.subjectName, self.classLabel) if part)
        return QuestionSet(
            id=self.id,
            kind=QuestionSetKind.PRACTICE,
            title=self.name,
            questions=sorted((q.to_model() for q in questions), key=lambda q: q.order),
            description=description,
        )


class StudentTestPayload(ApiModel):
    id: str = Field(..., min_length=1)
    testId: Optional[str] = None
    startedAt: Optional[datetime] = None
    submittedAt: Optional[datetime] = None
    answers: List["ReviewedAnswerPayload"] = Field(default_factory=list)


class StartTestResponse(ApiModel):
    """``POST /public/start-test``."""

    studentTest: StudentTestPayload

    def to_model(self, test_id: str) -> Attempt:
        student_test = self.studentTest
        return Attempt(
            id=student_test.id,
            question_set_id=student_test.testId or test_id,
            started_at=to_epoch_ms(student_test.startedAt) or 0,
            submitted_at=to_epoch_ms(student_test.submittedAt),
        )


class PracticeAttemptPayload(ApiModel):
    """``POST /practice/student/{id}/attempts`` and the review fetch."""

    id: str = Field(..., min_length=1)
    practiceId: Optional[str] = None
    startedAt: Optional[datetime] = None
    submittedAt: Optional[datetime] = None
    answers: List["ReviewedAnswerPayload"] = Field(default_factory=list)
    summary: Optional["SummaryPayload"] = None

    def to_model(self, practice_id: Optional[str] = None) -> Attempt:
        return Attempt(
            id=self.id,
            question_set_id=self.practiceId or practice_id or "",
            started_at=to_epoch_ms(self.startedAt) or 0,
            submitted_at=to_epoch_ms(self.submittedAt),
            answers=[answer.to_model() for answer in self.answers],
            summary=self.summary.to_model() if self.summary else None,
        )


class ReviewedAnswerPayload(ApiModel):
    questionId: str = Field(..., min_length=1)
    selectedAnswer: Optional[str] = None
    answer: Optional[str] = None
    isCorrect: Optional[bool] = None
    shownAnswerAt: Optional[str] = None
    question: Optional[QuestionPayload] = None

    def to_model(self) -> ReviewedAnswer:
        selected = self.selectedAnswer if self.selectedAnswer is not None else self.answer
        return ReviewedAnswer(
            question_id=self.questionId,
            selected_answer=selected or "",
            is_correct=self.isCorrect,
            shown_answer_at=self.shownAnswerAt,
            question=self.question.to_model() if self.question else None,
        )


class SummaryPayload(ApiModel):
    total: int = 0
    correct: int = 0
    wrong: int = 0
    score: float = 0

    def to_model(self) -> AttemptSummary:
        return AttemptSummary(
            total=self.total,
            correct=self.correct,
            wrong=self.wrong,
            score=self.score,
        )


class AnswerFeedbackResponse(ApiModel):
    """Response to an answer submission. Feedback is only present on reveal."""

    isCorrect: Optional[bool] = None
    correctAnswer: Optional[str] = None

    def to_model(self) -> Optional[AnswerResult]:
        if self.isCorrect is None or self.correctAnswer is None:
            return None
        return AnswerResult(is_correct=self.isCorrect, correct_answer=self.correctAnswer)


class TestResultPayload(ApiModel):
    score: Optional[float] = None
    totalPoints: Optional[float] = None
    percentage: Optional[float] = None
    isPassed: Optional[bool] = None
    scoreVisible: bool = True
    message: Optional[str] = None


class TestResultResponse(ApiModel):
    """``GET /public/test-result/{studentTestId}``."""

    result: TestResultPayload
    studentTest: StudentTestPayload

    def to_model(self) -> Attempt:
        student_test = self.studentTest
        answers = [answer.to_model() for answer in student_test.answers]
        correct = sum(1 for answer in answers if answer.is_correct)
        wrong = sum(1 for answer in answers if answer.is_correct is False)
        summary = AttemptSummary(
            total=len(answers),
            correct=correct,
            wrong=wrong,
            score=self.result.percentage or 0,
            is_passed=self.result.isPassed,
            score_visible=self.result.scoreVisible,
            message=self.result.message or "",
        )
        return Attempt(
            id=student_test.id,
            question_set_id=student_test.testId or "",
            started_at=to_epoch_ms(student_test.startedAt) or 0,
            submitted_at=to_epoch_ms(student_test.submittedAt),
            answers=answers,
            summary=summary,
        )


StudentTestPayload.model_rebuild()
PracticeAttemptPayload.model_rebuild()
