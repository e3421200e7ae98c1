# project/attendance_client/cli.py
# ------------------------------------------------------------
# attendance-client <command>
#   courses   list courses for a group/subgroup
#   select    pick group, subgroup, course (remembered locally)
#   live      run the live attendance screen
#   download  save the attendance spreadsheet
#   reset     forget the current selection
#   run       select -> live -> download
# ------------------------------------------------------------

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import config
from .api import AttendanceApi
from .camera import CameraCapture, Preview
from .context import KEY_COURSE, KEY_GROUP, KEY_SUBGROUP, SelectionStore, SessionContext
from .errors import (
    AttendanceClientError, CameraUnavailable, PreconditionMissing,
)
from .live_session import SessionSummary
from .run_loop import run_live

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REMOTE = 1
EXIT_PRECONDITION = 2


def setup_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


# -------------- prompts --------------
def choose(label: str, options: Sequence[str]) -> str:
    """Numbered menu on stdin; accepts the number or the value itself."""
    if not options:
        raise PreconditionMissing(f"No {label} available")
    print(f"Select {label}:")
    for i, opt in enumerate(options, 1):
        print(f"  {i}. {opt}")
    while True:
        raw = input(f"{label} [1-{len(options)}]: ").strip()
        if raw.isdigit() and 1 <= int(raw) <= len(options):
            return options[int(raw) - 1]
        if raw in options:
            return raw
        print(f"  '{raw}' is not one of the listed options")


def select_context(api: AttendanceApi, store: SelectionStore,
                   group: Optional[str] = None, subgroup: Optional[str] = None,
                   course: Optional[str] = None) -> SessionContext:
    group = group or choose("major", config.GROUPS)
    store.set(KEY_GROUP, group)
    subgroup = subgroup or choose("section", config.SUBGROUPS)
    store.set(KEY_SUBGROUP, subgroup)
    if not course:
        courses = api.get_courses(group, subgroup)
        if not courses:
            raise PreconditionMissing(f"No Courses Available for {group}/{subgroup}")
        course = choose("course", courses)
    store.set(KEY_COURSE, course)
    return SessionContext(group, subgroup, course).validate()


def resolve_context(args: argparse.Namespace, store: SelectionStore) -> SessionContext:
    """Command-line values win; anything missing comes from the stored selection."""
    saved = store.load()
    return SessionContext(
        group=args.group or saved.get(KEY_GROUP, ""),
        subgroup=args.subgroup or saved.get(KEY_SUBGROUP, ""),
        course=getattr(args, "course", None) or saved.get(KEY_COURSE, ""),
    ).validate()


def save_record(api: AttendanceApi, ctx: SessionContext, out: Optional[str]) -> Path:
    data = api.download_excel(ctx)
    path = Path(out) if out else Path.cwd() / config.RECORD_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("[download] %d bytes -> %s", len(data), path)
    return path


# -------------- commands --------------
def cmd_courses(args, api, store) -> int:
    saved = store.load()
    group = args.group or saved.get(KEY_GROUP)
    subgroup = args.subgroup or saved.get(KEY_SUBGROUP)
    if not group or not subgroup:
        raise PreconditionMissing("Major or section not selected")
    courses = api.get_courses(group, subgroup)
    if not courses:
        print("No Courses Available")
    for c in courses:
        print(c)
    return EXIT_OK


def cmd_select(args, api, store) -> int:
    ctx = select_context(api, store, args.group, args.subgroup, args.course)
    print(f"Selected {ctx.label()}")
    return EXIT_OK


def _live(args, api, ctx: SessionContext) -> SessionSummary:
    preview = Preview(show=not args.headless)
    camera = CameraCapture(index=args.camera, preview=preview)
    summary = asyncio.run(run_live(
        ctx, api,
        camera=camera,
        interval=args.interval,
        max_consecutive_failures=args.max_failures,
        max_duration_s=args.duration,
    ))
    print(f"Students Detected: {summary.count}")
    for name in summary.seen:
        print(f"  {name}")
    if summary.remote_ended:
        print("Attendance stopped successfully!")
    return summary


def cmd_live(args, api, store) -> int:
    ctx = resolve_context(args, store)
    _live(args, api, ctx)
    return EXIT_OK


def cmd_download(args, api, store) -> int:
    ctx = resolve_context(args, store)
    path = save_record(api, ctx, args.out)
    print(f"Saved {path}")
    return EXIT_OK


def cmd_reset(args, api, store) -> int:
    store.clear()
    print("Selection cleared")
    return EXIT_OK


def cmd_run(args, api, store) -> int:
    ctx = select_context(api, store, args.group, args.subgroup, args.course)
    summary = _live(args, api, ctx)
    if not summary.remote_ended:
        print("Attendance was not stopped on the server; skipping download")
        return EXIT_REMOTE
    path = save_record(api, ctx, args.out)
    print(f"Saved {path}")
    return EXIT_OK


# -------------- parser --------------
def _add_context_args(p: argparse.ArgumentParser, course: bool = True) -> None:
    p.add_argument("--group", "--major", dest="group", help="class group, e.g. CS")
    p.add_argument("--subgroup", "--section", dest="subgroup", help="subgroup, e.g. A")
    if course:
        p.add_argument("--course", help="course id")


def _add_live_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--camera", type=int, default=config.CAM_INDEX, help="camera index (default: %(default)s)")
    p.add_argument("--interval", type=float, default=config.SAMPLE_INTERVAL_S,
                   help="seconds between sampled frames (default: %(default)s)")
    p.add_argument("--max-failures", type=int, default=config.MAX_CONSECUTIVE_FAILURES,
                   help="consecutive failed frames before sampling halts (default: %(default)s)")
    p.add_argument("--headless", action="store_true", help="no preview windows")
    p.add_argument("--duration", type=float, default=None,
                   help="stop attendance automatically after this many seconds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="attendance-client",
                                     description="Live face attendance client")
    parser.add_argument("--backend-url", default=config.BACKEND_URL,
                        help="attendance service URL (default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=config.REQUEST_TIMEOUT_S,
                        help="HTTP timeout in seconds (default: %(default)s)")
    parser.add_argument("--selection-file", default=str(config.SELECTION_JSON),
                        help="where the current selection is kept (default: %(default)s)")
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("courses", help="list courses for a group/subgroup")
    _add_context_args(p, course=False)
    p.set_defaults(func=cmd_courses)

    p = sub.add_parser("select", help="choose group, subgroup and course")
    _add_context_args(p)
    p.set_defaults(func=cmd_select)

    p = sub.add_parser("live", help="run the live attendance screen")
    _add_context_args(p)
    _add_live_args(p)
    p.set_defaults(func=cmd_live)

    p = sub.add_parser("download", help="download the attendance spreadsheet")
    _add_context_args(p)
    p.add_argument("--out", default=None, help=f"output path (default: ./{config.RECORD_FILENAME})")
    p.set_defaults(func=cmd_download)

    p = sub.add_parser("reset", help="forget the current selection")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("run", help="select, take attendance, download")
    _add_context_args(p)
    _add_live_args(p)
    p.add_argument("--out", default=None, help=f"output path (default: ./{config.RECORD_FILENAME})")
    p.set_defaults(func=cmd_run)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    store = SelectionStore(Path(args.selection_file))
    api = AttendanceApi(base_url=args.backend_url, timeout=args.timeout)
    try:
        return args.func(args, api, store)
    except (PreconditionMissing, CameraUnavailable) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PRECONDITION
    except AttendanceClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REMOTE
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    finally:
        api.close()


if __name__ == "__main__":
    raise SystemExit(main())
