import asyncio

import pytest

from labsync.schemas.markers import DateGroup, Measurement
from labsync.services.events import SaveEvents
from labsync.services.reconciler import reconcile
from labsync.services.save_orchestrator import SaveOrchestrator, save_all


def _group(day, n=1):
    return DateGroup(date=day, markers=[Measurement(name=f"M{i}", value=i) for i in range(n)])


class Recorder:
    def __init__(self, fail_dates=(), raise_dates=()):
        self.fail_dates = set(fail_dates)
        self.raise_dates = set(raise_dates)
        self.calls = []

    async def __call__(self, group):
        self.calls.append(group.date)
        if group.date in self.raise_dates:
            raise RuntimeError("storage unavailable")
        return group.date not in self.fail_dates


def _events():
    events = SaveEvents()
    seen = {"changed": [], "failed": []}
    events.on_data_changed(seen["changed"].append)
    events.on_groups_failed(seen["failed"].append)
    return events, seen


def test_one_failure_does_not_stop_the_rest():
    groups = [_group("2024-03-01", 2), _group("2024-02-01", 3), _group("2024-01-01", 1)]
    save = Recorder(fail_dates={"2024-02-01"})
    events, seen = _events()

    report = asyncio.run(save_all(groups, save, events))

    assert save.calls == ["2024-03-01", "2024-02-01", "2024-01-01"]
    assert (report.saved, report.failed, report.skipped) == (2, 1, 0)
    assert report.total_markers_saved == 3
    assert [o.status for o in report.outcomes] == ["saved", "failed", "saved"]
    assert len(seen["changed"]) == 1
    assert len(seen["failed"]) == 1
    assert report.summary == "2 saved / 1 failed / 0 skipped"


def test_raised_error_counts_as_failure_in_multi_save():
    groups = [_group("2024-03-01"), _group("2024-02-01")]
    save = Recorder(raise_dates={"2024-03-01"})
    report = asyncio.run(save_all(groups, save))
    assert [o.status for o in report.outcomes] == ["failed", "saved"]
    assert "storage unavailable" in report.errors[0]


def test_invalid_dates_are_skipped_without_calling_save():
    groups = [_group("2024-03-01"), _group("03/01/2024"), _group("2024-02-30")]
    save = Recorder()
    events, seen = _events()
    report = asyncio.run(save_all(groups, save, events))
    assert save.calls == ["2024-03-01"]
    assert (report.saved, report.failed, report.skipped) == (1, 0, 2)
    assert len(seen["changed"]) == 1
    assert len(seen["failed"]) == 1


def test_all_saved_emits_no_failure_event():
    events, seen = _events()
    report = asyncio.run(save_all([_group("2024-03-01"), _group("2024-02-01")], Recorder(), events))
    assert report.saved == 2
    assert len(seen["changed"]) == 1
    assert seen["failed"] == []


def test_all_failed_emits_no_data_changed():
    groups = [_group("2024-03-01"), _group("2024-02-01")]
    events, seen = _events()
    report = asyncio.run(save_all(groups, Recorder(fail_dates={"2024-03-01", "2024-02-01"}), events))
    assert report.failed == 2
    assert seen["changed"] == []
    assert len(seen["failed"]) == 1


def test_single_group_error_propagates():
    save = Recorder(raise_dates={"2024-03-01"})
    events, seen = _events()
    with pytest.raises(RuntimeError, match="storage unavailable"):
        asyncio.run(save_all([_group("2024-03-01")], save, events))
    assert seen["changed"] == []


def test_single_group_false_is_reported_failed():
    report = asyncio.run(save_all([_group("2024-03-01")], Recorder(fail_dates={"2024-03-01"})))
    assert report.failed == 1
    assert report.saved == 0


def test_empty_input_saves_nothing():
    events, seen = _events()
    report = asyncio.run(save_all([], Recorder(), events))
    assert report.outcomes == []
    assert seen == {"changed": [], "failed": []}


def test_orchestrator_accepts_reconciled_extraction():
    extraction = reconcile(
        [],
        [
            {"testDate": "2024-01-01", "markers": [{"name": "A", "value": 1}]},
            {"testDate": "2024-02-01", "markers": [{"name": "B", "value": 2}]},
        ],
    )
    save = Recorder()
    orchestrator = SaveOrchestrator(save)
    report = asyncio.run(orchestrator.save(extraction))
    assert save.calls == ["2024-02-01", "2024-01-01"]
    assert report.saved == 2


def test_unsubscribe_and_listener_errors():
    events = SaveEvents()
    calls = []

    def broken(report):
        raise ValueError("listener bug")

    events.on_data_changed(broken)
    off = events.on_data_changed(calls.append)
    asyncio.run(save_all([_group("2024-03-01"), _group("2024-02-01")], Recorder(), events))
    assert len(calls) == 1

    off()
    asyncio.run(save_all([_group("2024-03-01"), _group("2024-02-01")], Recorder(), events))
    assert len(calls) == 1

    with pytest.raises(ValueError):
        events.subscribe("unknown", calls.append)
