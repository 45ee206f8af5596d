import threading
import time

import pytest

from src.core.line_items import LineItem
from src.server.schemas.quote import DraftRecord, FormKind
from src.services.draft_store import (
    DraftState,
    DraftStore,
    JsonFileStorage,
    MemoryStorage,
    StorageReadError,
    _default_timer,
    draft_key_for,
)
from src.services.form_state import FormStateController


def _record(name="Asha Verma"):
    return DraftRecord(
        kind=FormKind.QUOTATION,
        client_name=name,
        items=[LineItem(description="Walls", area=100, rate=50, total=5000)],
    )


def test_draft_keys():
    assert draft_key_for(FormKind.QUOTATION) == "quotation_form_draft"
    assert draft_key_for(FormKind.PROJECT) == "project_form_draft"
    with pytest.raises(ValueError):
        draft_key_for(FormKind.INVOICE)


def test_burst_of_edits_gives_one_write(storage, timers):
    store = DraftStore(storage, "quotation_form_draft", delay_seconds=2, timer_factory=timers)

    for i in range(5):
        store.schedule_save(_record(f"Client {'A' * (i + 1)}"))

    assert store.state is DraftState.PENDING
    assert storage.writes == 0
    assert [t.cancelled for t in timers.timers] == [True, True, True, True, False]

    timers.last.fire()
    assert storage.writes == 1
    assert store.state is DraftState.SAVED
    assert store.load_if_present().client_name == "Client AAAAA"


def test_superseded_timer_writes_nothing(storage, timers):
    store = DraftStore(storage, "quotation_form_draft", timer_factory=timers)
    store.schedule_save(_record("First"))
    first = timers.last
    store.schedule_save(_record("Second"))

    # Callback från en ersatt timer som ändå hann köras
    first.callback()
    assert storage.writes == 0

    timers.last.fire()
    timers.last.fire()
    assert storage.writes == 1
    assert store.load_if_present().client_name == "Second"


def test_timer_uses_configured_delay(storage, timers):
    store = DraftStore(storage, "k", delay_seconds=2.5, timer_factory=timers)
    store.schedule_save(_record())
    assert timers.last.delay == 2.5
    assert timers.last.started


def test_edit_after_save_returns_to_pending(storage, timers):
    store = DraftStore(storage, "k", timer_factory=timers)
    assert store.state is DraftState.NO_DRAFT
    store.schedule_save(_record())
    timers.last.fire()
    assert store.state is DraftState.SAVED
    store.schedule_save(_record("Next"))
    assert store.state is DraftState.PENDING


def test_discard_removes_draft_and_is_idempotent(storage, timers):
    store = DraftStore(storage, "k", timer_factory=timers)
    store.schedule_save(_record())
    timers.last.fire()
    assert store.load_if_present() is not None

    store.discard()
    assert store.load_if_present() is None
    assert store.state is DraftState.NO_DRAFT
    store.discard()
    assert store.load_if_present() is None


def test_discard_cancels_pending_save(storage, timers):
    store = DraftStore(storage, "k", timer_factory=timers)
    store.schedule_save(_record())
    pending = timers.last
    store.discard()
    pending.callback()
    assert storage.writes == 0
    assert store.load_if_present() is None


def test_flush_writes_pending_snapshot(storage, timers):
    store = DraftStore(storage, "k", timer_factory=timers)
    assert store.flush() is False
    store.schedule_save(_record("Flushed"))
    assert store.flush() is True
    assert timers.last.cancelled
    assert store.load_if_present().client_name == "Flushed"
    assert storage.writes == 1


def test_corrupt_draft_is_treated_as_absent():
    storage = MemoryStorage()
    storage.set("k", "{not json")
    store = DraftStore(storage, "k")
    assert store.state is DraftState.SAVED

    assert store.load_if_present() is None
    assert storage.get("k") is None
    assert store.state is DraftState.NO_DRAFT


def test_draft_with_wrong_shape_is_treated_as_absent():
    storage = MemoryStorage()
    storage.set("k", '{"kind": "quotation", "items": "oops"}')
    assert DraftStore(storage, "k").load_if_present() is None


def test_round_trip_through_hydrate(storage, timers):
    store = DraftStore(storage, "quotation_form_draft", timer_factory=timers)
    form = FormStateController(FormKind.QUOTATION, draft_store=store, default_terms=["Term A"])
    form.update_field("client_name", "Asha Verma")
    form.update_item_field(0, "description", "Living room walls")
    form.update_item_field(0, "area", 100)
    form.update_item_field(0, "rate", 50)
    form.add_item()
    form.update_item_field(1, "description", "Putty work")
    form.update_item_field(1, "total", 2000)
    form.add_site_image(url="https://img/1.jpg", public_id="p1", description="Front")
    form.add_site_image(file=object(), description="Not uploaded yet")
    form.update_discount(500)
    timers.last.fire()

    draft = store.load_if_present()
    assert draft is not None

    restored = FormStateController(FormKind.QUOTATION)
    store.hydrate(draft, restored)

    assert [i.model_dump() for i in restored.items] == [i.model_dump() for i in form.items]
    assert restored.client_name == "Asha Verma"
    assert restored.terms == ["Term A"]
    assert restored.subtotal == 7000.0
    assert restored.grand_total == 6500.0
    # Bara uppladdade bilder överlever – filhandtag sparas aldrig
    assert [img.public_id for img in restored.site_images] == ["p1"]


def test_hydrate_recomputes_stale_totals():
    draft = DraftRecord(
        kind=FormKind.QUOTATION,
        items=[LineItem(description="Walls", area=10, rate=10, total=1)],
        discount=20,
        subtotal=123456,
        grand_total=999,
    )
    form = FormStateController(FormKind.QUOTATION)
    DraftStore(MemoryStorage(), "k").hydrate(draft, form)
    assert form.items[0].total == 100.0
    assert form.subtotal == 100.0
    assert form.grand_total == 80.0


def test_hydrate_rejects_other_form_kind():
    form = FormStateController(FormKind.PROJECT)
    with pytest.raises(ValueError):
        form.restore(_record())


def test_json_file_storage(tmp_path):
    fs = JsonFileStorage(str(tmp_path / "drafts"))
    assert fs.get("quotation_form_draft") is None
    fs.set("quotation_form_draft", '{"a": 1}')
    assert fs.get("quotation_form_draft") == '{"a": 1}'
    assert (tmp_path / "drafts" / "quotation_form_draft.json").exists()
    fs.remove("quotation_form_draft")
    fs.remove("quotation_form_draft")
    assert fs.get("quotation_form_draft") is None


def test_store_survives_reload_with_file_storage(tmp_path, timers):
    fs = JsonFileStorage(str(tmp_path))
    store = DraftStore(fs, "project_form_draft", timer_factory=timers)
    store.schedule_save(
        DraftRecord(kind=FormKind.PROJECT, quotation_number="Q-1001", items=[LineItem(description="a", total=5)])
    )
    timers.last.fire()

    reopened = DraftStore.for_kind(FormKind.PROJECT, JsonFileStorage(str(tmp_path)))
    assert reopened.state is DraftState.SAVED
    draft = reopened.load_if_present()
    assert draft.quotation_number == "Q-1001"
    assert draft.saved_at


# ---- oläsbar lagring ----------------------------------------------------

class UnreadableStorage(MemoryStorage):
    def __init__(self):
        super().__init__()
        self.removed = []

    def get(self, key):
        if key in self._values:
            raise StorageReadError("bad bytes")
        return None

    def remove(self, key):
        self.removed.append(key)
        super().remove(key)


def test_unreadable_value_is_removed_and_reported_absent(timers):
    storage = UnreadableStorage()
    storage.set("quotation_form_draft", "whatever")

    store = DraftStore(storage, "quotation_form_draft", timer_factory=timers)
    assert store.state is DraftState.NO_DRAFT
    assert storage.removed == ["quotation_form_draft"]
    assert store.load_if_present() is None


def test_non_utf8_draft_file_is_discarded(tmp_path, timers):
    path = tmp_path / "quotation_form_draft.json"
    path.write_bytes(b"\xff\xfe")
    storage = JsonFileStorage(str(tmp_path))

    with pytest.raises(StorageReadError):
        storage.get("quotation_form_draft")

    store = DraftStore.for_kind(FormKind.QUOTATION, storage, timer_factory=timers)
    assert store.load_if_present() is None
    assert store.state is DraftState.NO_DRAFT
    assert not path.exists()


def test_draft_with_nan_total_is_corrupt(timers):
    storage = MemoryStorage()
    storage.set(
        "quotation_form_draft",
        '{"kind": "quotation", "items": [{"description": "x", "rate": 0, "total": NaN}]}',
    )
    store = DraftStore(storage, "quotation_form_draft", timer_factory=timers)
    assert store.load_if_present() is None
    assert storage.get("quotation_form_draft") is None


# ---- riktig timer -------------------------------------------------------

def test_default_timer_is_daemon():
    timer = _default_timer(60, lambda: None)
    assert isinstance(timer, threading.Timer)
    assert timer.daemon


def test_real_timer_writes_after_delay():
    storage = MemoryStorage()
    store = DraftStore(storage, "quotation_form_draft", delay_seconds=0.01)
    store.schedule_save(DraftRecord(kind=FormKind.QUOTATION, client_name="Asha"))
    store.schedule_save(DraftRecord(kind=FormKind.QUOTATION, client_name="Asha Verma"))

    deadline = time.monotonic() + 5
    while store.state is not DraftState.SAVED and time.monotonic() < deadline:
        time.sleep(0.01)

    assert store.state is DraftState.SAVED
    assert store.load_if_present().client_name == "Asha Verma"
