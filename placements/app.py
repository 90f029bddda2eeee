import argparse
import json
import sys
from pathlib import Path
from typing import Callable, List, Optional

from . import __version__
from .env import load_env, load_settings
from .errors import PlacementError
from .evaluation import ScoringClient, ScoringServiceError
from .logger import get_logger
from .models import Actor, Placement, Role, Stage
from .notifications import Notifier, WebhookNotifier
from .retry import retry_on_conflict
from .schema import REJECTION_REASONS
from .storage import PlacementStore
from .service import PlacementService


def build_service(args: argparse.Namespace) -> PlacementService:
    settings = load_settings()
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
    db_path = Path(args.db) if args.db else settings.db_path
    notifier = WebhookNotifier(settings.notify_url, timeout=settings.http_timeout) if settings.notify_url else Notifier()
    scoring = None
    if settings.scoring_url:
        scoring = ScoringClient(settings.scoring_url, api_key=settings.scoring_api_key, timeout=settings.http_timeout)
    return PlacementService(PlacementStore(db_path), notifier=notifier, scoring_client=scoring, logger=logger)


def actor_from(args: argparse.Namespace, default_role: Role) -> Actor:
    role = Role(args.role) if args.role else default_role
    return Actor(id=args.actor, role=role)


def print_placement(placement: Placement) -> None:
    print(json.dumps(placement.to_dict(), indent=2, ensure_ascii=False))


def run(service: PlacementService, op: Callable[[], Placement], expected_version: Optional[int] = None) -> None:
    """
    Run a mutating operation, reloading and retrying on version races.

    With ``expected_version`` the operation runs once; a pinned version
    either matches now or never will.
    """
    def on_retry(attempt, exc, delay):
        service.logger.info("Placement changed underneath us, retrying", attempt=attempt, error=str(exc))

    if expected_version is not None:
        placement = op()
    else:
        placement = retry_on_conflict(on_retry=on_retry)(op)()
    print_placement(placement)


def cmd_shortlist(args, service):
    placement = service.shortlist(args.job, args.candidate, args.client, actor_from(args, Role.EMPLOYER))
    print_placement(placement)


def cmd_show(args, service):
    print_placement(service.get(args.id))


def cmd_list(args, service):
    placements = service.list(stage=args.stage, job_id=args.job, candidate_id=args.candidate)
    if not placements:
        print("No placements found.")
        return
    print(f"Found {len(placements)} placements:\n")
    for p in placements:
        print(f"ID: {p.id}")
        print(f"  Job: {p.job_id}  Candidate: {p.candidate_id}  Client: {p.client_id}")
        print(f"  Stage: {p.stage.value}  (v{p.version}, updated {p.last_updated.isoformat()})")
        if p.offer_letter:
            print(f"  Offer: {p.offer_letter.status}")
        print()


def cmd_timeline(args, service):
    for event in service.timeline(args.id, event_type=args.type):
        by = f" by {event.completed_by}" if event.completed_by else ""
        print(f"{event.date.isoformat()} [{event.stage.value}] {event.event_type.value}{by}: {event.notes}")


def cmd_transition(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    run(service, lambda: service.transition(
        args.id, args.to, actor,
        notes=args.notes,
        rejection_reason=args.reason,
        rejection_comments=args.comments,
        expected_version=args.expected_version,
    ), args.expected_version)


def cmd_reject(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    run(service, lambda: service.reject(args.id, actor, args.reason, comments=args.comments))


def cmd_upload_doc(args, service):
    actor = actor_from(args, Role.CANDIDATE)
    doc = {"type": args.type, "file_name": args.file, "name": args.name, "file_size": args.size, "replaces": args.replaces}
    run(service, lambda: service.upload_document(args.id, doc, actor))


def cmd_review_doc(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    op = service.verify_document if args.command == "verify-doc" else service.reject_document
    run(service, lambda: op(args.id, args.doc, actor, comments=args.comments))


def cmd_schedule(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    meeting = {"date": args.date, "time": args.time, "timezone": args.timezone, "participants": args.participants}
    run(service, lambda: service.schedule_meeting(args.id, meeting, actor))


def cmd_evaluate(args, service):
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise SystemExit(f"{input_path} must hold a JSON object, got {type(payload).__name__}")

    actor = actor_from(args, Role.SYSTEM)
    if "score" in payload:
        run(service, lambda: service.record_evaluation(args.id, payload, actor))
        return
    try:
        placement = service.evaluate_screening(args.id, payload.get("questions", []), payload.get("answers", []), actor)
    except (ScoringServiceError, RuntimeError) as e:
        raise SystemExit(str(e))
    print_placement(placement)


def cmd_send_offer(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    offer = {
        "salary": args.salary,
        "joining_date": args.joining_date,
        "probation_period": args.probation,
        "custom_notes": args.notes,
    }
    version = args.expected_version
    run(service, lambda: service.send_offer(args.id, offer, actor, expected_version=version), version)


def cmd_respond_offer(args, service):
    actor = actor_from(args, Role.CANDIDATE)
    version = args.expected_version
    run(service, lambda: service.respond_to_offer(
        args.id, args.response, actor, deferred_date=args.deferred_date, expected_version=version,
    ), version)


def cmd_resolve_deferral(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    version = args.expected_version
    run(service, lambda: service.resolve_deferral(args.id, args.decision, actor, expected_version=version), version)


def cmd_withdraw_offer(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    version = args.expected_version
    run(service, lambda: service.withdraw_offer(args.id, actor, reason=args.reason, expected_version=version), version)


def cmd_comment(args, service):
    actor = actor_from(args, Role.EMPLOYER)
    run(service, lambda: service.add_comment(args.id, args.text, actor, stage=args.stage))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="placements", description="Placement pipeline engine CLI")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (default: $PLACEMENTS_DB or data/placements.db)")

    who = argparse.ArgumentParser(add_help=False)
    who.add_argument("--actor", required=True, help="Actor id issuing the operation")
    who.add_argument("--role", choices=[r.value for r in Role], help="Actor role (defaults per command)")

    pid = argparse.ArgumentParser(add_help=False)
    pid.add_argument("--id", required=True, help="Placement id")

    pinned = argparse.ArgumentParser(add_help=False)
    pinned.add_argument(
        "--expected-version", type=int,
        help="Fail with a conflict unless the placement is at this version (no retry)",
    )

    stages = [s.value for s in Stage]
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("shortlist", parents=[who], help="Shortlist a candidate for a job (creates the placement)")
    p.add_argument("--job", required=True)
    p.add_argument("--candidate", required=True)
    p.add_argument("--client", required=True, help="Mediating client id")
    p.set_defaults(func=cmd_shortlist)

    p = sub.add_parser("show", parents=[pid], help="Print a placement as JSON")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("list", help="List placements")
    p.add_argument("--stage", choices=stages)
    p.add_argument("--job")
    p.add_argument("--candidate")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("timeline", parents=[pid], help="Print a placement's history")
    p.add_argument("--type", help="Only events of this type (e.g. stage_change)")
    p.set_defaults(func=cmd_timeline)

    p = sub.add_parser("transition", parents=[pid, who, pinned], help="Move a placement to the next stage")
    p.add_argument("--to", required=True, choices=stages)
    p.add_argument("--notes")
    p.add_argument("--reason", help="Rejection reason (required with --to Rejected)")
    p.add_argument("--comments", help="Rejection comments")
    p.set_defaults(func=cmd_transition)

    p = sub.add_parser("reject", parents=[pid, who], help="Reject a placement")
    p.add_argument("--reason", required=True, help=f"One of: {', '.join(REJECTION_REASONS)}, or free text")
    p.add_argument("--comments")
    p.set_defaults(func=cmd_reject)

    p = sub.add_parser("upload-doc", parents=[pid, who], help="Upload a BGV document reference (candidate)")
    p.add_argument("--type", required=True)
    p.add_argument("--file", required=True, help="Object-store reference of the uploaded file")
    p.add_argument("--name")
    p.add_argument("--size", type=int)
    p.add_argument("--replaces", help="Id of a rejected document this upload replaces")
    p.set_defaults(func=cmd_upload_doc)

    for name, verb in (("verify-doc", "Verify"), ("reject-doc", "Reject")):
        p = sub.add_parser(name, parents=[pid, who], help=f"{verb} a pending BGV document (employer)")
        p.add_argument("--doc", required=True, help="Document id")
        p.add_argument("--comments")
        p.set_defaults(func=cmd_review_doc)

    p = sub.add_parser("schedule", parents=[pid, who], help="Schedule the interview meeting (employer)")
    p.add_argument("--date", required=True)
    p.add_argument("--time", required=True)
    p.add_argument("--timezone", default="UTC")
    p.add_argument("--participants", required=True, help="Comma-separated participant names")
    p.set_defaults(func=cmd_schedule)

    p = sub.add_parser("evaluate", parents=[pid, who], help="Record an AI evaluation from a JSON file")
    p.add_argument("--input", required=True, help="JSON with score/rationale, or questions/answers to send for scoring")
    p.set_defaults(func=cmd_evaluate)

    p = sub.add_parser("send-offer", parents=[pid, who, pinned], help="Send an offer letter (employer)")
    p.add_argument("--salary", required=True)
    p.add_argument("--joining-date", required=True)
    p.add_argument("--probation", required=True, help="Probation period, e.g. '6 months'")
    p.add_argument("--notes")
    p.set_defaults(func=cmd_send_offer)

    p = sub.add_parser("respond-offer", parents=[pid, who, pinned], help="Answer the offer (candidate)")
    p.add_argument("--response", required=True, choices=["accepted", "rejected", "deferred"])
    p.add_argument("--deferred-date", help="Requested joining date when deferring")
    p.set_defaults(func=cmd_respond_offer)

    p = sub.add_parser("resolve-deferral", parents=[pid, who, pinned], help="Approve or reject a deferral (employer)")
    p.add_argument("--decision", required=True, choices=["approved", "rejected"])
    p.set_defaults(func=cmd_resolve_deferral)

    p = sub.add_parser("withdraw-offer", parents=[pid, who, pinned], help="Withdraw the open offer (employer)")
    p.add_argument("--reason")
    p.set_defaults(func=cmd_withdraw_offer)

    p = sub.add_parser("comment", parents=[pid, who], help="Add a comment")
    p.add_argument("--text", required=True)
    p.add_argument("--stage", choices=stages, help="Stage the comment refers to (default: current)")
    p.set_defaults(func=cmd_comment)

    return parser


def main(argv: Optional[List[str]] = None):
    load_env()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    service = build_service(args)
    try:
        args.func(args, service)
    except PlacementError as e:
        print(f"[{e.kind}] {e}", file=sys.stderr)
        raise SystemExit(2)
    finally:
        service.notifier.close()
        service.store.close()
        service.logger.log_metrics_summary()


if __name__ == "__main__":
    main()
