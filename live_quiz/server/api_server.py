"""FastAPI server that exposes the student and instructor endpoints."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import asdict
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
import uvicorn

from live_quiz.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    PARTICIPANT_COOKIE,
    PARTICIPANT_COOKIE_MAX_AGE,
)
from live_quiz.core import commands
from live_quiz.core.errors import (
    IllegalTransition,
    InvalidCommand,
    InvalidSubmission,
    NoMoreQuestions,
    NoOpenSession,
    NotAuthorized,
    NothingToUndo,
    NotJoined,
    QuestionNotLive,
    QuizError,
    SelfMerge,
    SessionAlreadyOpen,
    StorageUnavailable,
    TriesExhausted,
    UnknownBucket,
    UnknownQuestion,
)
from live_quiz.core.models import StartMethod
from live_quiz.core.quiz_manager import QuizManager

_STATUS_BY_ERROR: dict[type[QuizError], int] = {
    NotAuthorized: 403,
    NoOpenSession: 404,
    UnknownQuestion: 404,
    IllegalTransition: 409,
    NoMoreQuestions: 409,
    QuestionNotLive: 409,
    TriesExhausted: 409,
    NothingToUndo: 409,
    SessionAlreadyOpen: 409,
    NotJoined: 409,
    InvalidCommand: 422,
    InvalidSubmission: 422,
    UnknownBucket: 422,
    SelfMerge: 422,
    StorageUnavailable: 503,
}


def _status_for(exc: QuizError) -> int:
    for cls in type(exc).__mro__:
        status = _STATUS_BY_ERROR.get(cls)
        if status is not None:
            return status
    return 400


def _ensure_participant(request: Request, response: Response) -> str:
    participant_id = request.cookies.get(PARTICIPANT_COOKIE)
    if participant_id:
        return participant_id
    participant_id = uuid4().hex
    response.set_cookie(
        key=PARTICIPANT_COOKIE,
        value=participant_id,
        max_age=PARTICIPANT_COOKIE_MAX_AGE,
        samesite="lax",
        httponly=True,
    )
    return participant_id


class SessionPayload(BaseModel):
    """Payload schema for opening a session."""

    name: str = "Session"


# --- Actions ---


class _InstructorAction(BaseModel):
    session_id: str | None = None

    @abstractmethod
    def to_command(self) -> commands.Command: ...

    def run(self, manager: QuizManager, activity_id: str, participant_id: str) -> Any:
        return manager.execute(activity_id, participant_id, self.to_command(), session_id=self.session_id)


class StartQuizAction(_InstructorAction):
    action: Literal["start_quiz"]

    def to_command(self) -> commands.Command:
        return commands.StartQuiz()


class StartQuestionAction(_InstructorAction):
    action: Literal["start_question"]
    method: StartMethod
    question_id: int | None = None
    duration: int | None = None
    slot: int | None = None

    def to_command(self) -> commands.Command:
        return commands.StartQuestion(
            method=self.method,
            question_id=self.question_id,
            duration=self.duration,
            slot=self.slot,
        )


class EndQuestionAction(_InstructorAction):
    action: Literal["end_question"]

    def to_command(self) -> commands.Command:
        return commands.EndQuestion()


class RunVotingAction(_InstructorAction):
    action: Literal["run_voting"]
    bucket_ids: list[int] = Field(default_factory=list)

    def to_command(self) -> commands.Command:
        return commands.RunVoting(bucket_ids=tuple(self.bucket_ids))


class ShowAnswerAction(_InstructorAction):
    action: Literal["show_answer"]

    def to_command(self) -> commands.Command:
        return commands.ShowAnswer()


class MergeResponsesAction(_InstructorAction):
    action: Literal["merge_responses"]
    from_id: int
    into_id: int
    votes: bool = False

    def to_command(self) -> commands.Command:
        return commands.MergeResponses(from_id=self.from_id, into_id=self.into_id, votes=self.votes)


class UndoMergeAction(_InstructorAction):
    action: Literal["undo_merge"]
    votes: bool = False

    def to_command(self) -> commands.Command:
        return commands.UndoMerge(votes=self.votes)


class CloseSessionAction(_InstructorAction):
    action: Literal["close_session"]

    def to_command(self) -> commands.Command:
        return commands.CloseSession()


class ListJumpQuestionsAction(_InstructorAction):
    action: Literal["list_jump_questions"]

    def to_command(self) -> commands.Command:
        return commands.ListJumpQuestions()


class ListImproviseQuestionsAction(_InstructorAction):
    action: Literal["list_improvise_questions"]

    def to_command(self) -> commands.Command:
        return commands.ListImproviseQuestions()


class SubmitResponseAction(BaseModel):
    action: Literal["submit_response"]
    response: str

    def run(self, manager: QuizManager, activity_id: str, participant_id: str) -> Any:
        return manager.submit_response(activity_id, participant_id, self.response)


class SubmitVoteAction(BaseModel):
    action: Literal["submit_vote"]
    bucket_id: int

    def run(self, manager: QuizManager, activity_id: str, participant_id: str) -> Any:
        return manager.submit_vote(activity_id, participant_id, self.bucket_id)


class GetResultsAction(BaseModel):
    action: Literal["get_results"]
    slot: int | None = None

    def run(self, manager: QuizManager, activity_id: str, participant_id: str) -> Any:
        return manager.get_results(activity_id, participant_id, self.slot)


class GetVoteResultsAction(BaseModel):
    action: Literal["get_vote_results"]

    def run(self, manager: QuizManager, activity_id: str, participant_id: str) -> Any:
        return {"votes": manager.get_vote_results(activity_id, participant_id)}


ActionPayload = Annotated[
    Union[
        StartQuizAction,
        StartQuestionAction,
        EndQuestionAction,
        RunVotingAction,
        ShowAnswerAction,
        MergeResponsesAction,
        UndoMergeAction,
        CloseSessionAction,
        ListJumpQuestionsAction,
        ListImproviseQuestionsAction,
        SubmitResponseAction,
        SubmitVoteAction,
        GetResultsAction,
        GetVoteResultsAction,
    ],
    Field(discriminator="action"),
]

_ACTION_ADAPTER: TypeAdapter[Any] = TypeAdapter(ActionPayload)


def _parse_action(payload: dict[str, Any]) -> Any:
    try:
        return _ACTION_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'action'}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidCommand(f"Invalid action payload: {errors}") from exc


def _to_json(result: Any) -> Any:
    if result is None:
        return None
    if isinstance(result, dict):
        return {key: _to_json(value) for key, value in result.items()}
    return asdict(result)


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def create_api_app(quiz_manager: QuizManager) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager."""
    app = FastAPI(title="LiveQuiz API", version="0.1.0")
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)

    @app.exception_handler(QuizError)
    def handle_quiz_error(request: Request, exc: QuizError) -> JSONResponse:
        return JSONResponse(
            status_code=_status_for(exc),
            content={"detail": str(exc), "code": exc.code},
        )

    @app.get("/identity")
    def get_identity(request: Request, response: Response) -> dict[str, object]:
        return {"participant_id": _ensure_participant(request, response)}

    @app.post("/activities/{activity_id}/sessions", status_code=201)
    def open_session(
        activity_id: str,
        payload: SessionPayload,
        request: Request,
        response: Response,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        participant_id = _ensure_participant(request, response)
        session = manager.open_session(activity_id, participant_id, payload.name)
        return {
            "session_id": session.session_id,
            "name": session.name,
            "state": session.status.value,
        }

    @app.post("/activities/{activity_id}/join", status_code=201)
    def join_session(
        activity_id: str,
        request: Request,
        response: Response,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        participant_id = _ensure_participant(request, response)
        attempt = manager.join(activity_id, participant_id)
        return {
            "participant_id": attempt.participant_id,
            "session_id": attempt.session_id,
            "joined_at": attempt.joined_at,
        }

    @app.get("/activities/{activity_id}/poll")
    def poll(
        activity_id: str,
        request: Request,
        response: Response,
        connection_id: str | None = None,
        session_id: str | None = None,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        participant_id = _ensure_participant(request, response)
        snapshot = manager.poll(activity_id, participant_id, connection_id=connection_id, session_id=session_id)
        return asdict(snapshot)

    @app.post("/activities/{activity_id}/action")
    def run_action(
        activity_id: str,
        request: Request,
        response: Response,
        payload: dict[str, Any] = Body(...),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> Any:
        participant_id = _ensure_participant(request, response)
        action = _parse_action(payload)
        return _to_json(action.run(manager, activity_id, participant_id))

    return app


def run_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API in the calling thread until interrupted."""
    uvicorn.run(create_api_app(quiz_manager), host=host, port=port, log_level="info")
