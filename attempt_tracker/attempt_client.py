"""
HTTP client for the attempt lifecycle on the platform API.

This is the only place that talks to the remote service. Every response is
validated against the schemas in ``schemas`` and returned as model objects.
"""
import logging
import time
from typing import Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .models import AnswerResult, Attempt, QuestionSet, QuestionSetKind
from .schemas import (
    AnswerFeedbackResponse,
    PracticeAttemptPayload,
    PracticePayload,
    QuestionPayload,
    StartTestResponse,
    TestPayload,
    TestResultResponse,
)
from .session_context import SessionContext

DEFAULT_BASE_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 30.0

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class AttemptClientError(Exception):
    """Base exception for attempt API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ServerError(AttemptClientError):
    """The server refused or failed a request, or sent an unusable response."""
    pass


class SubmissionError(AttemptClientError):
    """Finalizing an attempt failed (already submitted, expired, or unreachable)."""
    pass


class NotFoundError(AttemptClientError):
    """The attempt does not exist or does not belong to the caller."""
    pass


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return response.reason_phrase or fallback


class AttemptClient:
    """
    Async client for starting, answering, finalizing and reviewing attempts.

    Usage::

        async with AttemptClient(base_url, context) as client:
            attempt = await client.start(QuestionSetKind.PRACTICE, practice_id)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        context: Optional[SessionContext] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. ``http://localhost:5000/api``
            context: Session context supplying the bearer token
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.logger = logging.getLogger(__name__)
        self.context = context or SessionContext()
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "AttemptClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[AttemptClientError] = ServerError,
        json: Optional[dict] = None
    ) -> Any:
        """
        Send one request and return the decoded JSON body.

        Raises:
            error_cls: On transport failures and non-2xx responses
        """
        try:
            response = await self._http.request(
                method, path, json=json, headers=self.context.auth_headers()
            )
        except httpx.TimeoutException as e:
            raise error_cls("Request timed out. Please check your connection and try again.") from e
        except httpx.HTTPError as e:
            raise error_cls(f"Network error: {e}") from e

        if response.is_error:
            message = _error_message(response, f"Request failed with status {response.status_code}")
            self.logger.warning(
                f"{method} {path} failed with {response.status_code}: {message}",
                extra={
                    'event_type': 'api_request_failed',
                    'path': path,
                    'status_code': response.status_code,
                    'timestamp': time.time()
                }
            )
            raise error_cls(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise error_cls("Invalid response from server", status_code=response.status_code) from e

    def _parse(self, schema: Type[SchemaT], data: Any, error_cls: Type[AttemptClientError] = ServerError) -> SchemaT:
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            self.logger.error(f"Unexpected {schema.__name__} payload: {e}")
            raise error_cls("Invalid response from server") from e

    async def fetch_question_set(self, kind: QuestionSetKind, question_set_id: str) -> QuestionSet:
        """
        Load a test or practice with its ordered questions.

        Raises:
            ServerError: If the question-set is not accessible to the caller
        """
        if kind is QuestionSetKind.TEST:
            data = await self._request("GET", f"/students/test/{question_set_id}")
            return self._parse(TestPayload, data).to_model()

        meta = await self._request("GET", f"/practice/student/{question_set_id}")
        raw_questions = await self._request("GET", f"/practice/student/{question_set_id}/questions")
        practice = self._parse(PracticePayload, meta)
        questions = [self._parse(QuestionPayload, item) for item in (raw_questions or []) if isinstance(item, dict)]
        return practice.to_model(questions)

    async def start(self, kind: QuestionSetKind, question_set_id: str) -> Attempt:
        """
        Start (or resume, server side) an attempt on a question-set.

        Raises:
            ServerError: If the question-set is not accessible to the caller
        """
        if kind is QuestionSetKind.TEST:
            data = await self._request("POST", "/public/start-test", json={"testId": question_set_id})
            attempt = self._parse(StartTestResponse, data).to_model(question_set_id)
        else:
            data = await self._request("POST", f"/practice/student/{question_set_id}/attempts")
            attempt = self._parse(PracticeAttemptPayload, data).to_model(question_set_id)

        self.logger.info(
            f"Started attempt {attempt.id} on {kind.value} {question_set_id}",
            extra={
                'event_type': 'attempt_started',
                'attempt_id': attempt.id,
                'question_set_id': question_set_id,
                'timestamp': time.time()
            }
        )
        return attempt

    async def save_answer(
        self,
        kind: QuestionSetKind,
        attempt_id: str,
        question_id: str,
        value: str
    ) -> bool:
        """
        Background persistence of one answer. Never raises.

        Returns:
            True if the server stored the answer, False if the save failed
            and was only logged
        """
        try:
            await self._request("POST", *self._answer_request(kind, attempt_id, question_id, value, False))
        except AttemptClientError as e:
            self.logger.warning(
                f"Background save failed for question {question_id} of attempt {attempt_id}: {e}",
                extra={
                    'event_type': 'background_save_failed',
                    'attempt_id': attempt_id,
                    'question_id': question_id,
                    'status_code': e.status_code,
                    'timestamp': time.time()
                }
            )
            return False
        except Exception as e:
            # e.g. RuntimeError once the underlying client has been closed
            self.logger.error(
                f"Background save crashed for question {question_id} of attempt {attempt_id}: {e}",
                exc_info=True,
                extra={
                    'event_type': 'background_save_failed',
                    'attempt_id': attempt_id,
                    'question_id': question_id,
                    'timestamp': time.time()
                }
            )
            return False
        return True

    async def submit_answer(
        self,
        kind: QuestionSetKind,
        attempt_id: str,
        question_id: str,
        value: str,
        reveal: bool = False
    ) -> Optional[AnswerResult]:
        """
        Persist one answer, optionally asking for immediate feedback.

        Without ``reveal`` this is background persistence: failures are
        logged and swallowed, and None is returned.

        Returns:
            The correctness feedback when ``reveal`` is set and the server
            supplied it, None otherwise

        Raises:
            ServerError: Only when ``reveal`` is set and the request failed
        """
        if not reveal:
            await self.save_answer(kind, attempt_id, question_id, value)
            return None

        data = await self._request("POST", *self._answer_request(kind, attempt_id, question_id, value, True))
        return self._parse(AnswerFeedbackResponse, data or {}).to_model()

    @staticmethod
    def _answer_request(kind, attempt_id, question_id, value, reveal):
        if kind is QuestionSetKind.TEST:
            return "/public/submit-answer", ServerError, {
                "studentTestId": attempt_id, "questionId": question_id, "answer": value
            }
        return f"/practice/student/attempts/{attempt_id}/answers", ServerError, {
            "questionId": question_id, "selectedAnswer": value, "showAnswer": reveal
        }

    async def finalize(self, kind: QuestionSetKind, attempt_id: str) -> None:
        """
        Mark an attempt submitted.

        Raises:
            SubmissionError: If the attempt is already submitted, expired,
                or the request failed
        """
        if kind is QuestionSetKind.TEST:
            await self._request(
                "POST", "/public/submit-test", SubmissionError, json={"studentTestId": attempt_id}
            )
        else:
            await self._request(
                "POST", f"/practice/student/attempts/{attempt_id}/submit", SubmissionError
            )

        self.logger.info(
            f"Finalized attempt {attempt_id}",
            extra={
                'event_type': 'attempt_finalized',
                'attempt_id': attempt_id,
                'timestamp': time.time()
            }
        )

    async def fetch_completed(self, kind: QuestionSetKind, attempt_id: str) -> Attempt:
        """
        Load a completed attempt with its answers, questions and summary.

        Raises:
            NotFoundError: If the attempt does not belong to the caller
            ServerError: On any other failure
        """
        if kind is QuestionSetKind.TEST:
            path = f"/public/test-result/{attempt_id}"
        else:
            path = f"/practice/student/attempts/{attempt_id}"

        try:
            data = await self._request("GET", path)
        except ServerError as e:
            if e.status_code in (403, 404):
                raise NotFoundError(e.message, status_code=e.status_code) from e
            raise

        if kind is QuestionSetKind.TEST:
            return self._parse(TestResultResponse, data).to_model()
        return self._parse(PracticeAttemptPayload, data).to_model()
