import pytest

from nodescope.collector import Settings
from nodescope.drm import AMDGPUStats, DRMCollector, read_amdgpu_stats
from nodescope.metrics import build_fq_name

AMD_FILES = {
    "uevent": "DRIVER=amdgpu\nPCI_CLASS=30000\n",
    "gpu_busy_percent": "4\n",
    "mem_info_gtt_total": "8573157376\n",
    "mem_info_gtt_used": "144560128\n",
    "mem_info_vis_vram_total": "8573157376\n",
    "mem_info_vis_vram_used": "1490378752\n",
    "mem_info_vram_total": "8573157376\n",
    "mem_info_vram_used": "1490378752\n",
    "mem_info_vram_vendor": "samsung\n",
    "power_dpm_force_performance_level": "manual\n",
    "unique_id": "0123456789abcdef\n",
}


def _make_card(sys_root, name, files):
    device = sys_root / "class" / "drm" / name / "device"
    device.mkdir(parents=True)
    for filename, content in files.items():
        (device / filename).write_text(content)


def _name(name):
    return build_fq_name("node", "drm", name)


def test_read_amdgpu_stats(tmp_path):
    _make_card(tmp_path, "card0", AMD_FILES)
    stats = read_amdgpu_stats(tmp_path)
    assert stats == [
        AMDGPUStats(
            name="card0",
            gpu_busy_percent=4,
            memory_gtt_size=8573157376,
            memory_gtt_used=144560128,
            memory_visible_vram_size=8573157376,
            memory_visible_vram_used=1490378752,
            memory_vram_size=8573157376,
            memory_vram_used=1490378752,
            memory_vram_vendor="samsung",
            power_dpm_force_performance_level="manual",
            unique_id="0123456789abcdef",
        )
    ]


def test_other_drivers_are_skipped(tmp_path):
    _make_card(tmp_path, "card0", {"uevent": "DRIVER=i915\n"})
    _make_card(tmp_path, "card1", AMD_FILES)
    assert [s.name for s in read_amdgpu_stats(tmp_path)] == ["card1"]


def test_missing_fields_keep_defaults(tmp_path):
    _make_card(tmp_path, "card0", {"uevent": "DRIVER=amdgpu\n", "gpu_busy_percent": "7\n"})
    (stats,) = read_amdgpu_stats(tmp_path)
    assert stats == AMDGPUStats(name="card0", gpu_busy_percent=7)


def test_missing_uevent_raises(tmp_path):
    (tmp_path / "class" / "drm" / "card0").mkdir(parents=True)
    with pytest.raises(FileNotFoundError):
        read_amdgpu_stats(tmp_path)


def test_invalid_number_raises(tmp_path):
    _make_card(tmp_path, "card0", {"uevent": "DRIVER=amdgpu\n", "mem_info_gtt_used": "lots\n"})
    with pytest.raises(ValueError):
        read_amdgpu_stats(tmp_path)


def test_no_drm_class_gives_empty_list(tmp_path):
    assert read_amdgpu_stats(tmp_path) == []


def test_collector_update(tmp_path):
    _make_card(tmp_path, "card0", AMD_FILES)
    metrics = list(DRMCollector(Settings(sys_path=str(tmp_path))).update())
    assert len(metrics) == 8

    info = next(m for m in metrics if m.name == _name("card_info"))
    assert info.value == 1
    assert info.labels == {
        "card": "card0",
        "memory_vendor": "samsung",
        "power_performance_level": "manual",
        "unique_id": "0123456789abcdef",
        "vendor": "amd",
    }

    by_name = {m.name: m for m in metrics}
    assert by_name[_name("gpu_busy_percent")].value == 4
    assert by_name[_name("memory_gtt_used_bytes")].value == 144560128
    assert by_name[_name("memory_vis_vram_used_bytes")].value == 1490378752
    assert by_name[_name("memory_vram_size_bytes")].value == 8573157376
    assert all(m.labels["card"] == "card0" for m in metrics)