"""Lesson extraction command-line entry point.

Commands:
- ``generate``: build a lesson for a topic prompt and print the
  ``GenerationResult`` as JSON (exit code 0 on success, 1 on failure)
- ``check``: probe one provider with a single short request and print the
  ``ConnectionCheck`` as JSON
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from src.config import get_settings
from src.schemas.generation import Strictness
from src.services.lesson_service import LessonGenerationService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="lesson-extract",
        description="Resilient structured lesson extraction from language-model providers",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"lesson-extract {settings.app_version}",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    generate_parser = subparsers.add_parser("generate", help="Generate a lesson")
    generate_parser.add_argument("topic", type=str, help="Topic prompt for the lesson")
    generate_parser.add_argument(
        "--provider",
        action="append",
        default=None,
        help="Provider to use; repeat for a failover order (default: PROVIDER_ORDER)",
    )
    generate_parser.add_argument(
        "--strictness",
        choices=[s.value for s in Strictness],
        default=None,
        help="Repair strictness (default: DEFAULT_STRICTNESS)",
    )
    generate_parser.add_argument(
        "--questions",
        type=int,
        default=None,
        help="Target question count (default: TARGET_QUESTION_COUNT)",
    )

    check_parser = subparsers.add_parser("check", help="Check connectivity to a provider")
    check_parser.add_argument(
        "--provider",
        type=str,
        default=None,
        help="Provider to probe (default: DEFAULT_PROVIDER)",
    )
    return parser


async def run_generate(args: argparse.Namespace, service: LessonGenerationService) -> int:
    if not args.topic.strip():
        logger.error("Topic prompt must not be empty")
        return 2
    if args.questions is not None and args.questions < 1:
        logger.error("--questions must be at least 1")
        return 2

    result = await service.generate_lesson(
        args.topic,
        providers=args.provider,
        strictness=Strictness(args.strictness) if args.strictness else None,
        question_count=args.questions,
    )
    print(result.model_dump_json(indent=2, by_alias=True))
    return 0 if result.success else 1


async def run_check(args: argparse.Namespace, service: LessonGenerationService) -> int:
    check = await service.check_connection(args.provider)
    print(check.model_dump_json(indent=2))
    return 0 if check.success else 1


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    configure_logging(settings.log_level)
    service = LessonGenerationService(settings=settings)

    if args.command == "generate":
        return asyncio.run(run_generate(args, service))
    if args.command == "check":
        return asyncio.run(run_check(args, service))
    return 0


if __name__ == "__main__":
    sys.exit(main())
