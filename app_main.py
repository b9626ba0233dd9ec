"""Application entry point for the LiveQuiz server."""

from __future__ import annotations

import argparse
import socket
from pathlib import Path

from live_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from live_quiz.constants.quiz_constants import DEFAULT_QUESTION_TIME_SECONDS, WAIT_FOR_QUESTION_SECONDS
from live_quiz.core.auth import StaticRoster
from live_quiz.core.models import ActivitySettings
from live_quiz.core.quiz_importer import QuizImportError, load_quiz_from_file
from live_quiz.core.quiz_manager import QuizManager
from live_quiz.server.api_server import run_api_server
from live_quiz.utils.logging_config import configure_logging


def _determine_server_url(port: int) -> str:
    """Best-effort determination of the local IP for the student-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a live classroom quiz server.")
    parser.add_argument("plan", type=Path, help="quiz plan file to load")
    parser.add_argument("--activity", default="default", help="activity id the plan is loaded into")
    parser.add_argument(
        "--instructor",
        action="append",
        default=[],
        metavar="PARTICIPANT_ID",
        help="participant id allowed to control the quiz (repeatable)",
    )
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--wait", type=int, default=WAIT_FOR_QUESTION_SECONDS, help="lead-in seconds before a question")
    parser.add_argument(
        "--question-time",
        type=int,
        default=DEFAULT_QUESTION_TIME_SECONDS,
        help="seconds given to questions without a TIMELIMIT",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Initialize logging, load the quiz plan and serve the API."""
    args = _build_parser().parse_args(argv)
    logger = configure_logging()
    logger.info("Starting LiveQuiz server...")

    try:
        imported = load_quiz_from_file(args.plan)
    except (OSError, QuizImportError) as exc:
        logger.error("Could not load quiz plan %s: %s", args.plan, exc)
        return 1

    quiz_manager = QuizManager(
        authorizer=StaticRoster(instructors=args.instructor),
        settings=ActivitySettings(
            wait_for_question_seconds=args.wait,
            default_question_seconds=args.question_time,
        ),
    )
    quiz_manager.load_quiz_from_questions(args.activity, imported.questions)
    logger.info(
        "Loaded %d questions (%d planned) for activity %s",
        len(imported.questions),
        imported.planned_count,
        args.activity,
    )
    if not args.instructor:
        logger.warning("No instructor ids given; nobody can control the quiz.")

    logger.info("Server available at %s", _determine_server_url(args.port))
    run_api_server(quiz_manager, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
