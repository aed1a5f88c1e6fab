"""
Operator CLI for the sidecar records.

Usage:
    intent-governance init
    intent-governance intents
    intent-governance show INT-001
    intent-governance create "Add JWT middleware in src/auth/" --yes
    intent-governance lesson "Run lint before commit" --category code_style --intent INT-001
    intent-governance history INT-001 --limit 10
    intent-governance complete INT-001
    intent-governance protect INT-005
    intent-governance rebuild-map
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .approval import AutoApprover, ConsoleApprover
from .config import load_config
from .engine import GovernanceEngine
from .errors import GovernanceError, SidecarError
from .models import IntentDescriptor, LessonCategory
from .store_lock import LockAcquisitionError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="intent-governance",
        description="Inspect and maintain intent governance sidecar files",
    )
    parser.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create missing sidecar files")
    sub.add_parser("intents", help="List registered intents")

    show = sub.add_parser("show", help="Print the context block for an intent")
    show.add_argument("intent_id")

    create = sub.add_parser("create", help="Register a new intent")
    create.add_argument("prompt")
    create.add_argument("--id", dest="intent_id", help="Explicit intent id (default: next INT-NNN)")
    create.add_argument("--name", help="Intent name")
    create.add_argument("--scope", action="append", help="Owned scope glob (repeatable)")
    create.add_argument("--constraint", action="append", help="Constraint (repeatable)")
    create.add_argument("--yes", action="store_true", help="Skip the approval prompt")

    lesson = sub.add_parser("lesson", help="Append a lesson to the knowledge log")
    lesson.add_argument("text")
    lesson.add_argument(
        "--category",
        choices=[c.value for c in LessonCategory],
        default=LessonCategory.OTHER.value,
    )
    lesson.add_argument("--intent", dest="intent_id")

    history = sub.add_parser("history", help="Recent trace entries for an intent")
    history.add_argument("intent_id")
    history.add_argument("--limit", type=int, default=10)

    complete = sub.add_parser("complete", help="Mark an intent DONE")
    complete.add_argument("intent_id")

    block = sub.add_parser("block", help="Mark an intent BLOCKED")
    block.add_argument("intent_id")

    protect = sub.add_parser("protect", help="Add an intent to the protected list")
    protect.add_argument("intent_id")

    sub.add_parser("rebuild-map", help="Regenerate intent_map.md from the ledger")

    return parser


def _run(args: argparse.Namespace, engine: GovernanceEngine) -> int:
    store = engine.store

    if args.command == "init":
        engine.initialize()
        print(f"Sidecar ready at {store.sidecar_dir}")
        return 0

    if args.command == "intents":
        intents = store.list_intents()
        if not intents:
            print("No intents registered.")
        for intent in intents:
            protected = " [protected]" if store.is_protected(intent.id) else ""
            print(f"{intent.id}\t{intent.status.value}\t{intent.name}{protected}")
            for pattern in intent.owned_scope:
                print(f"\t\t{pattern}")
        return 0

    if args.command == "show":
        session = engine.new_session()
        bundle = engine.select_intent(args.intent_id, session)
        print(bundle.to_prompt_block())
        return 0

    if args.command == "create":
        if args.yes:
            engine.approver = AutoApprover()
        descriptor = IntentDescriptor(
            prompt=args.prompt,
            intent_id=args.intent_id,
            name=args.name,
            owned_scope=args.scope,
            constraints=args.constraint,
        )
        intent = engine.create_intent(descriptor)
        print(f"Created {intent.id}: {intent.name}")
        print(f"Scope: {', '.join(intent.owned_scope)}")
        return 0

    if args.command == "lesson":
        engine.record_lesson(args.text, args.category, args.intent_id)
        print(f"Recorded lesson in {store.knowledge_path}")
        return 0

    if args.command == "history":
        entries = engine.recent_history(args.intent_id, args.limit)
        if not entries:
            print(f"No recorded changes for {args.intent_id}.")
        for entry in entries:
            print(json.dumps(entry.model_dump(mode="json", exclude_none=True)))
        return 0

    if args.command == "complete":
        intent = engine.complete_intent(args.intent_id)
        print(f"{intent.id} is {intent.status.value}")
        return 0

    if args.command == "block":
        intent = engine.block_intent(args.intent_id)
        print(f"{intent.id} is {intent.status.value}")
        return 0

    if args.command == "protect":
        if engine.protect_intent(args.intent_id):
            print(f"{args.intent_id} added to {store.protected_path.name}")
        else:
            print(f"{args.intent_id} is already protected")
        return 0

    if args.command == "rebuild-map":
        engine.rebuild_intent_map()
        print(f"Rebuilt {store.intent_map_path}")
        return 0

    return 2


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    workspace = args.workspace.resolve()
    try:
        engine = GovernanceEngine(
            workspace,
            config=load_config(workspace),
            approver=ConsoleApprover(),
        )
        return _run(args, engine)
    except GovernanceError as e:
        print(e.error.to_json(), file=sys.stderr)
        return 1
    except (SidecarError, LockAcquisitionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
