import pytest

from training_gateway.models import ProgramRequest
from training_gateway.planner import CatalogError, as_given, clamp_days, default_program_id, fmt_number, round_to_step
from training_gateway.providers import DEMO_RMS

from conftest import FIXED_NOW


def make_program_request(**overrides):
    base = {
        "days_per_week": 4,
        "session_minutes": 60,
        "goal": {"primary": "strength"},
        "constraints": {"knee_sensitive": True},
    }
    base.update(overrides)
    return ProgramRequest(**base)


def main_items(plan):
    return [(d.day_name, x) for d in plan.days for x in d.items if x.type == "main"]


def test_knee_sensitive_strength_program_uses_box_squat(synthesizer, catalog_entries):
    result = synthesizer.generate_program("demo_user", make_program_request(), catalog_entries, DEMO_RMS["demo_user"])
    plan = result.program

    assert [d.day_name for d in plan.days] == ["Upper A", "Lower A", "Upper B", "Lower B"]
    lower_a_main = [x for x in plan.days[1].items if x.type == "main"]
    assert len(lower_a_main) == 1
    squat = lower_a_main[0]
    assert squat.exercise_id == 202
    assert squat.prescription.sets == 5
    assert squat.prescription.reps == 4
    assert squat.prescription.intensity.type == "percent_1rm"
    assert squat.prescription.intensity.value == 0.80
    assert squat.prescription.target_weight_kg == 125
    assert "Knee: using the knee-friendly squat variant (Box Squat)." in result.summary_text
    assert "Main lift target weights (kg): 97.5, 55, 125, 92.5, 152.5" in result.summary_text


def test_knee_sensitive_never_picks_back_squat(synthesizer, catalog_entries):
    for goal in ("strength", "hypertrophy", "fat_loss", "fitness"):
        req = make_program_request(goal={"primary": goal}, days_per_week=7)
        plan = synthesizer.generate_program("demo_user", req, catalog_entries, DEMO_RMS["demo_user"]).program
        assert all(x.exercise_id != 201 for _, x in main_items(plan))


def test_back_squat_preferred_without_knee_constraint(synthesizer, catalog_entries):
    req = make_program_request(constraints={})
    result = synthesizer.generate_program("demo_user", req, catalog_entries, DEMO_RMS["demo_user"])
    squat = [x for x in result.program.days[1].items if x.type == "main"][0]
    assert squat.exercise_id == 201
    # 165 * 0.80 = 132 -> 132.5
    assert squat.prescription.target_weight_kg == 132.5
    assert "Knee:" not in result.summary_text


def test_back_squat_falls_back_to_box_squat_when_missing(synthesizer, catalog_entries):
    catalog = [e for e in catalog_entries if e.key != "back_squat"]
    req = make_program_request(constraints={"knee_sensitive": False})
    plan = synthesizer.generate_program("demo_user", req, catalog, {}).program
    squat = [x for x in plan.days[1].items if x.type == "main"][0]
    assert squat.exercise_id == 202


def test_non_strength_goal_uses_lighter_percentages_and_more_reps(synthesizer, catalog_entries):
    req = make_program_request(goal={"primary": "hypertrophy"}, constraints={})
    plan = synthesizer.generate_program("demo_user", req, catalog_entries, DEMO_RMS["demo_user"]).program
    bench = plan.days[0].items[0]
    assert bench.prescription.reps == 6
    assert bench.prescription.intensity.value == 0.75
    assert bench.prescription.target_weight_kg == 90
    squat = plan.days[1].items[0]
    # 165 * 0.72 = 118.8 -> 120
    assert squat.prescription.target_weight_kg == 120
    assert plan.days[3].items[0].prescription.reps == 5


def test_missing_or_zero_rm_falls_back_to_rpe(synthesizer, catalog_entries):
    rms = {101: 0}
    result = synthesizer.generate_program("user_123", make_program_request(), catalog_entries, rms)
    for _, item in main_items(result.program):
        assert item.prescription.intensity.type == "rpe"
        assert item.prescription.intensity.value == 7.5
        assert item.prescription.target_weight_kg is None
    assert "RPE-based" in result.summary_text


def test_accessories_are_fixed_and_carry_no_target(synthesizer, catalog_entries):
    plan = synthesizer.generate_program("demo_user", make_program_request(), catalog_entries, DEMO_RMS["demo_user"]).program
    lower_a = plan.days[1].items
    assert [(x.name, x.prescription.sets, x.prescription.reps) for x in lower_a if x.type == "accessory"] == [
        ("Romanian Deadlift", 4, "6-10"),
        ("Leg Curl Machine", 3, "10-15"),
        ("Bulgarian Split Squat", 3, "8-12/side"),
    ]
    dumped = plan.model_dump(exclude_unset=True)
    accessory = dumped["days"][1]["items"][1]["prescription"]
    assert "target_weight_kg" not in accessory
    assert accessory["intensity"] == {"type": "rpe", "value": 8.0}


def test_target_weights_are_multiples_of_two_and_a_half(synthesizer, catalog_entries):
    for rm in (37, 61.3, 99.9, 121.1, 155, 212.4, 301.7):
        rms = {101: rm, 102: rm, 201: rm, 202: rm, 203: rm}
        for goal in ("strength", "fitness"):
            req = make_program_request(goal={"primary": goal}, constraints={})
            plan = synthesizer.generate_program("demo_user", req, catalog_entries, rms).program
            for _, item in main_items(plan):
                w = item.prescription.target_weight_kg
                assert w is not None
                assert (w / 2.5).is_integer()


@pytest.mark.parametrize(
    "requested,expected_days,expected_meta",
    [(10, 4, 7), (7, 4, 7), (4, 4, 4), (2, 2, 2), (2.7, 2, 2), (1, 1, 1), (0, 1, 1), (-3, 1, 1)],
)
def test_days_per_week_is_clamped_then_truncated(synthesizer, catalog_entries, requested, expected_days, expected_meta):
    req = make_program_request(days_per_week=requested)
    plan = synthesizer.generate_program("demo_user", req, catalog_entries, {}).program
    assert len(plan.days) == expected_days
    assert plan.meta.days_per_week == expected_meta


def test_program_metadata_uses_injected_id_and_clock(synthesizer, catalog_entries):
    req = make_program_request(goal={"primary": "strength", "secondary": "hypertrophy"}, preferred_exercise_ids=[204])
    result = synthesizer.generate_program("demo_user", req, catalog_entries, {})
    plan = result.program
    assert plan.program_id == "prog_20260201_test"
    assert plan.user_id == "demo_user"
    assert plan.meta.created_at == FIXED_NOW.isoformat()
    assert plan.meta.goal == {"primary": "strength", "secondary": "hypertrophy"}
    assert plan.meta.constraints == {"knee_sensitive": True}
    assert all(d.estimated_minutes == 60 for d in plan.days)
    assert result.summary_text.splitlines()[0] == "Program: 4 sessions/week, 60 min, goal strength + hypertrophy."
    # preferred lifts do not change selection
    assert all(x.exercise_id != 204 for _, x in main_items(plan))


def test_summary_lists_each_day(synthesizer, catalog_entries):
    req = make_program_request(days_per_week=2)
    lines = synthesizer.generate_program("demo_user", req, catalog_entries, {}).summary_text.splitlines()
    assert "- Upper A: main lifts Bench Press, Overhead Press; accessories 2" in lines
    assert "- Lower A: main lifts Box Squat; accessories 3" in lines
    assert not any(line.startswith("- Upper B") for line in lines)


def test_missing_catalog_entries_raise(synthesizer, catalog_entries):
    catalog = [e for e in catalog_entries if e.key not in ("rdl", "bench_press")]
    with pytest.raises(CatalogError) as exc:
        synthesizer.generate_program("demo_user", make_program_request(), catalog, {})
    assert "bench_press" in str(exc.value)

    no_box = [e for e in catalog_entries if e.key != "box_squat"]
    with pytest.raises(CatalogError):
        synthesizer.generate_program("demo_user", make_program_request(), no_box, {})


def test_round_to_step():
    assert round_to_step(124.0) == 125
    assert round_to_step(123.75) == 125
    assert round_to_step(123.74) == 122.5
    assert round_to_step(float("nan")) is None


def test_clamp_days_defaults_to_four():
    assert clamp_days(None) == 4


def test_default_program_id_is_date_stamped():
    pid = default_program_id(FIXED_NOW)
    prefix, date, suffix = pid.split("_")
    assert prefix == "prog"
    assert date == "20260201"
    assert 0 <= int(suffix) < 10000


def test_request_values_are_echoed_as_given(synthesizer, catalog_entries):
    req = make_program_request(constraints={"knee_sensitive": True, "note": None})
    plan = synthesizer.generate_program("demo_user", req, catalog_entries, {}).program
    dumped = plan.model_dump()
    assert dumped["meta"]["constraints"] == {"knee_sensitive": True, "note": None}
    assert dumped["meta"]["goal"] == {"primary": "strength"}
    assert isinstance(dumped["meta"]["session_minutes"], int)
    assert all(isinstance(d["estimated_minutes"], int) for d in dumped["days"])

    req = make_program_request(session_minutes=47.5, constraints={})
    result = synthesizer.generate_program("demo_user", req, catalog_entries, {})
    assert result.program.meta.session_minutes == 47.5
    assert result.program.meta.constraints == {}
    assert "47.5 min" in result.summary_text


def test_as_given_keeps_explicit_nulls():
    req = make_program_request(goal={"primary": "fitness", "secondary": None})
    assert as_given(req.goal) == {"primary": "fitness", "secondary": None}


def test_large_target_weights_are_not_abbreviated(synthesizer, catalog_entries):
    rms = {e.id: 1234567 for e in catalog_entries}
    req = make_program_request(constraints={"knee_sensitive": False})
    result = synthesizer.generate_program("demo_user", req, catalog_entries, rms)
    bench = result.program.days[0].items[0]
    assert bench.prescription.target_weight_kg == 1012345
    assert "1012345" in result.summary_text
    assert "e+06" not in result.summary_text


@pytest.mark.parametrize("value,expected", [(125.0, "125"), (97.5, "97.5"), (60, "60"), (1012345.0, "1012345")])
def test_fmt_number(value, expected):
    assert fmt_number(value) == expected
