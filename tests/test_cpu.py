import logging
import re
from dataclasses import replace

import pytest

from nodescope.collector import Settings
from nodescope.cpu import (
    CPUCollector,
    CPUInfo,
    CPUStat,
    node_cpu_seconds_desc,
    parse_cpuinfo,
    parse_proc_stat,
    update_field_info,
)
from nodescope.metrics import render_text

LOGGER = logging.getLogger("test-cpu")


def _stat(value):
    return CPUStat(*([value] * 10))


def make_collector(stats, settings=None):
    collector = CPUCollector(settings or Settings(), LOGGER)
    collector.cpu_stats = [replace(s) for s in stats]
    return collector


def test_update_cpu_stats_moves_forward():
    collector = make_collector([_stat(100.0)])
    want = [_stat(101.0)]
    collector.update_cpu_stats(want)
    assert collector.cpu_stats == want


def test_update_cpu_stats_ignores_small_jump_back():
    first = [_stat(100.0)]
    collector = make_collector(first)
    jump_back = [_stat(99.9)]
    collector.update_cpu_stats(jump_back)
    assert collector.cpu_stats != jump_back
    assert collector.cpu_stats == first


def test_update_cpu_stats_resets_on_idle_jump():
    collector = make_collector([_stat(100.0)])
    reset_idle = [replace(_stat(102.0), idle=1.0)]
    collector.update_cpu_stats(reset_idle)
    assert collector.cpu_stats == reset_idle


def test_update_cpu_stats_resizes_cache():
    collector = make_collector([_stat(100.0)])
    new = [_stat(5.0), _stat(6.0)]
    collector.update_cpu_stats(new)
    assert collector.cpu_stats == new


PROC_STAT = """cpu  301854 612 111922 8979004 3552 2 3944 0 44 36
cpu0 100 200 300 400 500 600 700 800 900 1000
cpu1 1 2 3 4 5 6 7 8 9 10
intr 8885917 17 0 0 0 0
ctxt 38014093
"""


def test_parse_proc_stat():
    stats = parse_proc_stat(PROC_STAT)
    assert len(stats) == 2
    assert stats[0] == CPUStat(1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0)
    assert stats[1].user == pytest.approx(0.01)
    assert stats[1].guest_nice == pytest.approx(0.1)


def test_parse_proc_stat_short_line_leaves_zero():
    stats = parse_proc_stat("cpu0 100 200 300 400\n")
    assert stats == [CPUStat(user=1.0, nice=2.0, system=3.0, idle=4.0)]


def test_parse_proc_stat_bad_cpu_id():
    with pytest.raises(ValueError):
        parse_proc_stat("cpuX 1 2 3\n")


CPUINFO = """processor\t: 0
vendor_id\t: GenuineIntel
cpu family\t: 6
model\t\t: 142
model name\t: Example CPU @ 2.00GHz
stepping\t: 10
microcode\t: 0xb4
cpu MHz\t\t: 799.998
cache size\t: 8192 KB
physical id\t: 0
siblings\t: 2
core id\t\t: 0
cpu cores\t: 2
flags\t\t: fpu vme de pse
bugs\t\t: cpu_meltdown spectre_v1

processor\t: 1
vendor_id\t: GenuineIntel
cpu family\t: 6
model\t\t: 142
model name\t: Example CPU @ 2.00GHz
stepping\t: 10
microcode\t: 0xb4
cache size\t: 8192 KB
physical id\t: 0
core id\t\t: 1
flags\t\t: fpu
bugs\t\t:
"""


def test_parse_cpuinfo():
    infos = parse_cpuinfo(CPUINFO)
    assert len(infos) == 2
    first = infos[0]
    assert first.processor == 0
    assert first.vendor_id == "GenuineIntel"
    assert first.cpu_family == "6"
    assert first.model_name == "Example CPU @ 2.00GHz"
    assert first.cpu_mhz == pytest.approx(799.998)
    assert first.cpu_cores == 2
    assert first.flags == ["fpu", "vme", "de", "pse"]
    assert first.bugs == ["cpu_meltdown", "spectre_v1"]
    assert infos[1].core_id == "1"
    assert infos[1].bugs == []


def test_parse_cpuinfo_invalid():
    with pytest.raises(ValueError):
        parse_cpuinfo("vendor_id : x\n")


def test_update_field_info_filters():
    metrics = list(update_field_info(["fpu", "vme", "de"], re.compile("^(fpu|de)$"), node_cpu_seconds_desc.__class__("node_cpu_flag_info", "h", ("flag",))))
    assert [m.label_values for m in metrics] == [("fpu",), ("de",)]
    assert all(m.value == 1.0 for m in metrics)


def test_update_field_info_without_pattern():
    assert list(update_field_info(["fpu"], None, node_cpu_seconds_desc)) == []


def test_invalid_include_regex():
    with pytest.raises(ValueError):
        CPUCollector(Settings(cpu_flags_include="["), LOGGER)


def test_include_flag_enables_info():
    collector = CPUCollector(Settings(cpu_bugs_include="spectre"), LOGGER)
    assert collector.enable_info is True
    assert collector.bugs_include.pattern == "spectre"


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture
def fixture_settings(tmp_path):
    proc = tmp_path / "proc"
    sys = tmp_path / "sys"
    _write(proc / "stat", PROC_STAT)
    _write(proc / "cpuinfo", CPUINFO)
    cpu = sys / "devices" / "system" / "cpu"
    _write(cpu / "cpu0" / "topology" / "physical_package_id", "0\n")
    _write(cpu / "cpu0" / "topology" / "core_id", "0\n")
    _write(cpu / "cpu0" / "thermal_throttle" / "core_throttle_count", "5\n")
    _write(cpu / "cpu0" / "thermal_throttle" / "package_throttle_count", "30\n")
    _write(cpu / "cpu1" / "topology" / "physical_package_id", "0\n")
    _write(cpu / "cpu1" / "topology" / "core_id", "1\n")
    _write(cpu / "cpu1" / "thermal_throttle" / "core_throttle_count", "0\n")
    _write(cpu / "cpu1" / "thermal_throttle" / "package_throttle_count", "99\n")
    (cpu / "cpu2").mkdir(parents=True)
    return Settings(proc_path=str(proc), sys_path=str(sys))


def test_update_thermal_throttle(fixture_settings):
    collector = CPUCollector(fixture_settings, LOGGER)
    metrics = list(collector.update_thermal_throttle())
    got = [(m.name, m.label_values, m.value) for m in metrics]
    assert got == [
        ("node_cpu_package_throttles_total", ("0",), 30.0),
        ("node_cpu_core_throttles_total", ("0", "0"), 5.0),
        ("node_cpu_core_throttles_total", ("0", "1"), 0.0),
    ]


def test_update_stat(fixture_settings):
    collector = CPUCollector(fixture_settings, LOGGER)
    metrics = list(collector.update_stat())
    seconds = {
        m.label_values: m.value for m in metrics if m.name == "node_cpu_seconds_total"
    }
    assert seconds[("0", "user")] == pytest.approx(1.0)
    assert seconds[("0", "steal")] == pytest.approx(8.0)
    assert seconds[("1", "idle")] == pytest.approx(0.04)
    guest = {m.label_values: m.value for m in metrics if m.name == "node_cpu_guest_seconds_total"}
    assert guest == {
        ("0", "user"): pytest.approx(9.0),
        ("0", "nice"): pytest.approx(10.0),
        ("1", "user"): pytest.approx(0.09),
        ("1", "nice"): pytest.approx(0.1),
    }


def test_update_stat_without_guest(fixture_settings):
    fixture_settings.cpu_guest = False
    collector = CPUCollector(fixture_settings, LOGGER)
    names = {m.name for m in collector.update_stat()}
    assert names == {"node_cpu_seconds_total"}


def test_update_info(fixture_settings):
    fixture_settings.cpu_flags_include = "^(fpu|vme)$"
    fixture_settings.cpu_bugs_include = "spectre"
    collector = CPUCollector(fixture_settings, LOGGER)
    metrics = list(collector.update_info())
    info = [m for m in metrics if m.name == "node_cpu_info"]
    assert info[0].labels == {
        "cachesize": "8192 KB",
        "core": "0",
        "cpu": "0",
        "family": "6",
        "microcode": "0xb4",
        "model": "142",
        "model_name": "Example CPU @ 2.00GHz",
        "package": "0",
        "stepping": "10",
        "vendor": "GenuineIntel",
    }
    assert len(info) == 2
    flags = [m.label_values[0] for m in metrics if m.name == "node_cpu_flag_info"]
    bugs = [m.label_values[0] for m in metrics if m.name == "node_cpu_bug_info"]
    assert flags == ["fpu", "vme"]
    assert bugs == ["spectre_v1"]


def test_update_renders(fixture_settings):
    collector = CPUCollector(fixture_settings, LOGGER)
    text = render_text(collector.update())
    assert 'node_cpu_seconds_total{cpu="0",mode="user"} 1\n' in text
    assert 'node_cpu_package_throttles_total{package="0"} 30\n' in text
    assert "# TYPE node_cpu_seconds_total counter\n" in text
    assert "node_cpu_info" not in text


def test_update_missing_stat(tmp_path):
    collector = CPUCollector(Settings(proc_path=str(tmp_path), sys_path=str(tmp_path)), LOGGER)
    with pytest.raises(FileNotFoundError):
        list(collector.update())


def test_cpuinfo_defaults():
    info = CPUInfo()
    assert (info.processor, info.flags, info.bugs) == (0, [], [])