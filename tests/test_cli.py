import json

from src.cli.__main__ import main
from src.services.draft_store import DraftStore, JsonFileStorage
from src.server.schemas.quote import DraftRecord, FormKind


def test_totals_command(tmp_path, capsys):
    form = tmp_path / "form.json"
    form.write_text(json.dumps({
        "items": [{"description": "Walls", "area": 10, "rate": 20}],
        "discount": 50,
    }), encoding="utf-8")

    assert main(["totals", str(form)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["subtotal"] == 200.0
    assert out["grandTotal"] == 150.0


def test_draft_show_and_discard(tmp_path, capsys):
    store = DraftStore.for_kind(FormKind.QUOTATION, JsonFileStorage(str(tmp_path)))
    store.schedule_save(DraftRecord(kind=FormKind.QUOTATION, client_name="Asha"))
    store.flush()

    assert main(["draft", "show", "quotation", f"--dir={tmp_path}"]) == 0
    assert json.loads(capsys.readouterr().out)["clientName"] == "Asha"

    assert main(["draft", "discard", "quotation", f"--dir={tmp_path}"]) == 0
    assert main(["draft", "show", "quotation", f"--dir={tmp_path}"]) == 1


def test_invoice_has_no_draft(tmp_path):
    assert main(["draft", "show", "invoice", f"--dir={tmp_path}"]) == 1


def test_usage():
    assert main([]) == 1
