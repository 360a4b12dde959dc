import numpy
import pytest

from lcmsproc.core.exceptions import PeakNotFound
from lcmsproc.storage.peak_table import PeakTable

from ..helpers import create_peak


@pytest.fixture
def peaks():
    return [
        create_peak("s1", 200.0, 80.0, into=10.0),
        create_peak("s1", 100.0, 50.0, into=20.0),
        create_peak("s2", 150.0, 60.0, into=30.0),
        create_peak("s2", 300.0, 20.0, into=40.0, filled=True),
    ]


@pytest.fixture
def table(peaks):
    table = PeakTable()
    table.add_peaks(peaks)
    return table


def test_add_peaks_assign_consecutive_ids(peaks):
    table = PeakTable()
    assert table.add_peaks(peaks[:2]) == [0, 1]
    assert table.add_peaks(peaks[2:]) == [2, 3]
    assert len(table) == 4


def test_add_peaks_do_not_modify_input(peaks):
    PeakTable().add_peaks(peaks)
    assert all(x.id == -1 for x in peaks)


def test_get_peak(table):
    peak = table.get_peak(2)
    assert peak.id == 2
    assert peak.sample_id == "s2"


def test_get_missing_peak_raise_error(table):
    with pytest.raises(PeakNotFound):
        table.get_peak(10)


def test_has_peak(table):
    assert table.has_peak(0)
    assert not table.has_peak(10)


def test_list_sample_ids(table):
    assert table.list_sample_ids() == ["s1", "s2"]


def test_list_peaks_sorted_by_rt_in_each_sample(table):
    assert [x.id for x in table.list_peaks()] == [1, 0, 3, 2]


def test_list_peaks_sample_ids_order(table):
    assert [x.sample_id for x in table.list_peaks(sample_ids=["s2", "s1"])] == ["s2", "s2", "s1", "s1"]


def test_list_peaks_missing_sample_returns_empty_list(table):
    assert table.list_peaks(sample_ids=["s5"]) == list()


def test_list_peaks_mz_range(table):
    assert [x.id for x in table.list_peaks(mz_range=(100.0, 150.0))] == [1, 2]


def test_list_peaks_rt_range(table):
    assert [x.id for x in table.list_peaks(rt_range=(50.0, 80.0))] == [1, 0, 2]


def test_list_peaks_exclude_filled(table):
    assert all(not x.filled for x in table.list_peaks(filled=False))
    assert len(table.list_peaks(filled=False)) == 3


def test_fetch_columns(table):
    columns = table.fetch_columns("into", "mz")
    assert numpy.array_equal(columns["into"], [10.0, 20.0, 30.0, 40.0])
    assert numpy.array_equal(columns["mz"], [200.0, 100.0, 150.0, 300.0])


def test_fetch_columns_peak_ids(table):
    columns = table.fetch_columns("into", peak_ids=[3, 0])
    assert numpy.array_equal(columns["into"], [40.0, 10.0])


def test_fetch_columns_invalid_column_raise_error(table):
    with pytest.raises(ValueError):
        table.fetch_columns("invalid")


def test_adjust_rt(table):
    table.adjust_rt("s1", lambda x: x + 5.0)
    assert table.has_adjusted_rt()
    peak = table.get_peak(0)
    assert (peak.rt, peak.rt_min, peak.rt_max) == (85.0, 80.0, 90.0)
    assert table.get_raw_rt(0) == 80.0
    assert table.get_peak(2).rt == 60.0


def test_adjust_rt_twice_keeps_first_raw_values(table):
    table.adjust_rt("s1", lambda x: x + 5.0)
    table.adjust_rt("s1", lambda x: x + 5.0)
    assert table.get_peak(0).rt == 90.0
    assert table.get_raw_rt(0) == 80.0


def test_restore_raw_rt(table, peaks):
    expected = [(x.id, x.rt, x.rt_min, x.rt_max) for x in table.list_peaks()]
    table.adjust_rt("s1", lambda x: 2.0 * x)
    table.adjust_rt("s2", lambda x: x - 1.0)
    table.restore_raw_rt()
    actual = [(x.id, x.rt, x.rt_min, x.rt_max) for x in table.list_peaks()]
    assert actual == expected
    assert not table.has_adjusted_rt()


def test_drop_filled(table):
    assert table.drop_filled() == [3]
    assert len(table) == 3
    assert not any(x.filled for x in table.list_peaks())


def test_drop_filled_is_idempotent(table):
    table.drop_filled()
    assert table.drop_filled() == list()
    assert len(table) == 3


def test_drop_filled_ids_are_reused(table):
    table.drop_filled()
    assert table.add_peaks([create_peak("s2", 300.0, 20.0, filled=True)]) == [3]


def test_drop_filled_removes_empty_samples():
    table = PeakTable()
    table.add_peaks([create_peak("s1", 100.0, 50.0), create_peak("s2", 100.0, 50.0, filled=True)])
    table.drop_filled()
    assert table.list_sample_ids() == ["s1"]


def test_jsonl_round_trip(table, tmp_path):
    path = tmp_path / "peaks.jsonl"
    table.to_jsonl(path)
    actual = PeakTable.from_jsonl(path)
    assert actual == table
    assert actual.add_peaks([create_peak("s1", 100.0, 50.0)]) == [4]


def test_jsonl_empty_table(tmp_path):
    path = tmp_path / "peaks.jsonl"
    PeakTable().to_jsonl(path)
    assert len(PeakTable.from_jsonl(path)) == 0
