# src/cli/__main__.py
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from src.core.totals import calculate_totals
from src.server.schemas.quote import FormKind, TotalsPreviewIn, TotalsPreviewOut
from src.services.draft_store import DraftStore, JsonFileStorage

USAGE = """Usage:
  python -m src.cli totals <form.json>
  python -m src.cli draft show <quotation|project> [--dir=knowledge/drafts]
  python -m src.cli draft discard <quotation|project> [--dir=knowledge/drafts]

Examples:
  python -m src.cli totals examples/quotation.json
  python -m src.cli draft show quotation
"""


def _load_json(p: str):
    try:
        return json.loads(Path(p).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"Error reading JSON '{p}': {e}", file=sys.stderr)
        sys.exit(2)


def _cmd_totals(form_path: str) -> int:
    data = _load_json(form_path)
    try:
        form = TotalsPreviewIn.model_validate(data)
    except ValidationError as e:
        print(f"Invalid form '{form_path}': {e}", file=sys.stderr)
        return 2

    totals = calculate_totals(form.items, form.extra_work, form.discount)
    out = TotalsPreviewOut(
        item_totals=list(totals.item_totals),
        subtotal=totals.subtotal,
        discount=totals.discount,
        grand_total=totals.grand_total,
    )
    print(json.dumps(out.model_dump(by_alias=True), ensure_ascii=False, indent=2))
    return 0


def _cmd_draft(action: str, kind_raw: str, draft_dir) -> int:
    try:
        kind = FormKind(kind_raw.lower())
        store = DraftStore.for_kind(kind, JsonFileStorage(draft_dir))
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    if action == "show":
        draft = store.load_if_present()
        if draft is None:
            return 1
        print(draft.model_dump_json(by_alias=True, indent=2))
        return 0

    if action == "discard":
        store.discard()
        return 0

    print(USAGE, file=sys.stderr)
    return 1


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print(USAGE, file=sys.stderr)
        return 1

    cmd = args[0].lower()

    # parse optional args (order-agnostic)
    draft_dir = None
    positional = []
    for arg in args[1:]:
        if arg.startswith("--dir="):
            draft_dir = arg.split("=", 1)[1]
        elif arg.startswith("--"):
            continue
        else:
            positional.append(arg)

    if cmd == "totals" and positional:
        return _cmd_totals(positional[0])

    if cmd == "draft" and len(positional) >= 2:
        return _cmd_draft(positional[0].lower(), positional[1], draft_dir)

    print(USAGE, file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
