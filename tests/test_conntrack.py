import pytest

from nodescope.collector import NoDataError, Settings
from nodescope.conntrack import (
    ConntrackCollector,
    ConntrackStatistics,
    read_conntrack_statistics,
)

HEADER = (
    "entries  searched found new invalid ignore delete delete_list insert "
    "insert_failed drop early_drop icmp_error  expect_new expect_create expect_delete search_restart"
)
ZEROS = " ".join(["00000000"] * 17)
# found=1 invalid=2 ignore=3 insert=4 insert_failed=5 drop=6 early_drop=7 search_restart=8
VALUES = (
    "00000021 00000000 00000001 00000000 00000002 00000003 00000000 00000000 "
    "00000004 00000005 00000006 00000007 00000000 00000000 00000000 00000000 00000008"
)


def _proc(tmp_path, stat_lines, count="33", limit="65536"):
    netfilter = tmp_path / "sys" / "net" / "netfilter"
    netfilter.mkdir(parents=True)
    (netfilter / "nf_conntrack_count").write_text(count + "\n")
    (netfilter / "nf_conntrack_max").write_text(limit + "\n")
    stat = tmp_path / "net" / "stat"
    stat.mkdir(parents=True)
    (stat / "nf_conntrack").write_text("\n".join([HEADER, *stat_lines]) + "\n")
    return tmp_path


def test_statistics_are_summed(tmp_path):
    proc = _proc(tmp_path, [ZEROS, VALUES])
    assert read_conntrack_statistics(proc) == ConntrackStatistics(
        found=1, invalid=2, ignore=3, insert=4, insert_failed=5,
        drop=6, early_drop=7, search_restart=8,
    )


def test_repeated_lines_double(tmp_path):
    single = read_conntrack_statistics(_proc(tmp_path / "a", [VALUES]))
    double = read_conntrack_statistics(_proc(tmp_path / "b", [VALUES, VALUES]))
    assert double.found == 2 * single.found
    assert double.search_restart == 2 * single.search_restart


def test_missing_fields_rejected(tmp_path):
    proc = _proc(tmp_path, ["00000001 00000002"])
    with pytest.raises(ValueError, match="missing fields"):
        read_conntrack_statistics(proc)


def test_collector_metrics(tmp_path):
    proc = _proc(tmp_path, [ZEROS, VALUES])
    metrics = list(ConntrackCollector(Settings(proc_path=str(proc))).update())
    values = {m.name: m.value for m in metrics}
    assert values["node_nf_conntrack_entries"] == 33
    assert values["node_nf_conntrack_entries_limit"] == 65536
    assert values["node_nf_conntrack_stat_found"] == 1
    assert values["node_nf_conntrack_stat_search_restart"] == 8
    assert len(metrics) == 10


def test_collector_not_loaded(tmp_path):
    with pytest.raises(NoDataError):
        list(ConntrackCollector(Settings(proc_path=str(tmp_path))).update())


def test_collector_bad_value(tmp_path):
    proc = _proc(tmp_path, [VALUES], count="abc")
    with pytest.raises(RuntimeError, match="failed to retrieve conntrack stats"):
        list(ConntrackCollector(Settings(proc_path=str(proc))).update())