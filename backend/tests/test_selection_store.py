import json

import pytest

from efs.schemas import SessionRecord
from efs.utils.selection import (
    STORAGE_KEY,
    FileBackend,
    MemoryBackend,
    SelectedSession,
    SelectionImportError,
    SelectionStore,
)


def rec(code, class_no, weekday, start="09:00", end="10:30", room="KEC 301"):
    return SessionRecord(code=code, class_no=class_no, weekday=weekday, start_time=start,
                         end_time=end, room=room, name=f"{code} title")


CATALOG = {
    "ENG101": [rec("ENG101", "01", 0), rec("ENG101", "01", 3, "14:00", "15:30"), rec("ENG101", "02", 1)],
    "MTH200": [rec("MTH200", "01+02", 2), rec("MTH200", "03", 4)],
    "ART100": [rec("ART100", "", 0), rec("ART100", "", 2)],
}


def lookup(code):
    return CATALOG.get(code, [])


def test_add_then_remove_restores_previous_state():
    store = SelectionStore(lookup)
    store.add_class("MTH200", "03")
    before = [s.to_dict() for s in store]
    outcome = store.add_class("ENG101", "01")
    assert outcome.changed
    assert outcome.notices[-1] == "Added ENG101 class 01"
    assert len(store) == 3
    assert {s.weekday for s in store if s.code == "ENG101"} == {0, 3}
    store.remove_class("ENG101", "01")
    assert [s.to_dict() for s in store] == before


def test_add_duplicate_and_missing_class():
    store = SelectionStore(lookup)
    store.add_class("eng101", "02")
    dup = store.add_class("ENG101", "02")
    assert not dup.changed
    assert "already in your timetable" in dup.notices[0]
    missing = store.add_class("NOPE1", "01")
    assert not missing.changed
    assert "was not found" in missing.notices[0]
    assert not store.remove_class("ENG101", "09").changed
    assert len(store) == 1


def test_lookup_failure_reports_notice():
    def broken(code):
        raise OSError("connection reset")
    outcome = SelectionStore(broken).add_class("ENG101", "01")
    assert not outcome.changed
    assert outcome.notices == ["Could not load ENG101, please try again"]


def test_combined_class_answers_for_each_section():
    store = SelectionStore(lookup)
    store.add_class("MTH200", "01+02")
    assert store.is_selected("MTH200", "01")
    assert store.is_selected("MTH200", "02")
    assert store.is_selected("MTH200", "01+02")
    assert not store.is_selected("MTH200", "03")
    assert not store.is_selected("ENG101", "01")


def test_blank_class_number_is_one_class():
    store = SelectionStore(lookup)
    outcome = store.add_class("ART100", "")
    assert outcome.notices[-1] == "Added ART100"
    assert len(store) == 2
    assert store.remove_class("ART100", "").changed
    assert len(store) == 0


def test_export_import_round_trip():
    store = SelectionStore(lookup)
    store.add_class("ENG101", "01")
    store.add_class("MTH200", "01+02")
    exported = store.export()
    other = SelectionStore(lookup)
    other.import_(exported)
    assert other.export() == exported
    assert other.selections[0] == store.selections[0]


def test_import_rejects_non_list_and_keeps_state():
    store = SelectionStore(lookup)
    store.add_class("ENG101", "02")
    for bad in ('{"code": "ENG101"}', "not json", 42, [1, 2]):
        with pytest.raises(SelectionImportError):
            store.import_(bad)
    assert len(store) == 1
    with pytest.raises(SelectionImportError, match="must be a list of sessions, got dict"):
        store.import_({"a": 1})


def test_from_dict_accepts_snake_case():
    s = SelectedSession.from_dict({"code": "ENG101", "class_no": "01", "weekday": 0,
                                   "start_time": "09:00", "end_time": "10:30"})
    assert (s.class_no, s.start_time, s.end_time) == ("01", "09:00", "10:30")


def test_save_load_with_memory_backend():
    backend = MemoryBackend()
    store = SelectionStore(lookup, backend)
    assert store.load() is False
    store.add_class("ENG101", "01")
    store.save()
    restored = SelectionStore(lookup, backend)
    assert restored.load() is True
    assert restored.export() == store.export()
    store.clear()
    assert len(store) == 0


def test_load_discards_unreadable_document():
    store = SelectionStore(lookup, MemoryBackend("{broken"))
    assert store.load() is False
    assert len(store) == 0


def test_file_backend_keeps_other_keys(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")
    store = SelectionStore(lookup, FileBackend(path))
    store.add_class("ENG101", "02")
    store.save()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["theme"] == "dark"
    assert json.loads(data[STORAGE_KEY])[0]["code"] == "ENG101"
    FileBackend(path).clear()
    assert json.loads(path.read_text(encoding="utf-8")) == {"theme": "dark"}


def test_section_of_a_combined_class_is_added_with_overlap_notice():
    catalog = {"BIO300": [rec("BIO300", "01+02", 2), rec("BIO300", "01", 4, "11:00", "12:30")]}
    store = SelectionStore(lambda code: catalog.get(code, []))
    store.add_class("BIO300", "01+02")
    outcome = store.add_class("BIO300", "01")
    assert outcome.changed is True
    assert any("overlaps" in n for n in outcome.notices)
    assert outcome.notices[-1] == "Added BIO300 class 01"
    assert {s.class_no for s in store} == {"01+02", "01"}
