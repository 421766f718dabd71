from types import SimpleNamespace

import pytest

from fabtrack.metrics import (
    compute_shift_summary,
    compute_summary,
    machine_multiplier,
    weighted_efficiency,
)


def rec(shift="day", efficiency=0, meter=0, total_pick=0, runtime=0, machine_type="single"):
    return SimpleNamespace(
        shift=shift, efficiency=efficiency, meter=meter, total_pick=total_pick, runtime=runtime,
        machine=SimpleNamespace(type=machine_type),
    )


def settings_row(cfm=0, units_consumed=None):
    return SimpleNamespace(cfm=cfm, units_consumed=units_consumed)


def test_double_machine_counts_twice():
    assert machine_multiplier(rec(machine_type="double")) == 2
    assert machine_multiplier(rec(machine_type="single")) == 1
    assert machine_multiplier(SimpleNamespace(machine=None)) == 1

    double = compute_shift_summary([rec(meter=100, total_pick=1000, machine_type="double")])
    single = compute_shift_summary([rec(meter=100, total_pick=1000, machine_type="single")])
    assert double.total_meter == 200
    assert double.total_pick == 2000
    assert single.total_meter == 100
    assert single.total_pick == 1000


def test_zero_efficiency_is_excluded_from_average():
    s = compute_shift_summary([rec(efficiency=0), rec(efficiency=50), rec(efficiency=70)])
    assert s.avg_efficiency == pytest.approx(60)
    assert s.machine_count == 2


def test_zero_runtime_is_included_in_average():
    s = compute_shift_summary([rec(runtime=0), rec(runtime=60), rec(runtime=120)])
    assert s.avg_runtime == pytest.approx(60)


def test_empty_shift_is_all_zero():
    s = compute_shift_summary([])
    assert (s.avg_efficiency, s.total_meter, s.total_pick, s.machine_count, s.avg_runtime) == (0, 0, 0, 0, 0)


def test_weighted_efficiency_uses_scheduled_hours():
    assert weighted_efficiency(80, 60) == pytest.approx((14 * 80 + 10 * 60) / 24)
    assert weighted_efficiency(50, 50) == pytest.approx(50)
    assert weighted_efficiency(0, 0) == 0


def test_compute_summary_splits_shifts_and_rolls_up():
    records = [
        rec("day", efficiency=80, meter=100, total_pick=1000, runtime=600, machine_type="double"),
        rec("day", efficiency=0, meter=50, total_pick=500, runtime=0),
        rec("night", efficiency=60, meter=40, total_pick=400, runtime=500),
    ]
    daily = [settings_row(cfm=10, units_consumed=50), settings_row(cfm=20, units_consumed=None)]
    s = compute_summary(records, daily)

    assert s.day_efficiency == pytest.approx(80)
    assert s.day_meter == 250
    assert s.day_pick == 2500
    assert s.day_machine == 1
    assert s.avg_day_runtime == pytest.approx(300)
    assert s.night_efficiency == pytest.approx(60)
    assert s.night_meter == 40
    assert s.night_machine == 1

    assert s.total_efficiency == pytest.approx((14 * 80 + 10 * 60) / 24)
    assert s.total_meter == 290
    assert s.total_pick == 2900
    assert s.total_machine == pytest.approx(1)
    assert s.total_avg_runtime == pytest.approx(800)
    assert s.avg_cfm == pytest.approx(15)
    assert s.total_units_consumed == 50
    assert s.units_per_meter == pytest.approx(50 / 290)
    assert s.machines_reported == 1


def test_compute_summary_without_rows():
    s = compute_summary([], [])
    assert s.total_meter == 0
    assert s.units_per_meter == 0
    assert s.avg_cfm == 0
    assert s.machines_reported == 0


def test_compute_summary_is_pure():
    records = [rec("day", efficiency=75, meter=10), rec("night", efficiency=65, meter=20)]
    daily = [settings_row(cfm=5, units_consumed=12)]
    assert compute_summary(records, daily) == compute_summary(records, daily)
