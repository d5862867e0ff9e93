from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import math

import numpy as np
from pydantic import BaseModel

from .models import (
    DayPlan,
    ExerciseCatalogEntry,
    Intensity,
    Prescription,
    PrescriptionItem,
    ProgramMeta,
    ProgramPlan,
    ProgramRequest,
    ProgramResult,
)


WEIGHT_STEP_KG = 2.5
FALLBACK_MAIN_RPE = 7.5

REQUIRED_KEYS = [
    "bench_press", "ohp", "barbell_row", "pull_up",
    "trap_bar_deadlift", "rdl", "leg_curl", "split_squat",
]


class CatalogError(ValueError):
    pass


def round_to_step(x: float, step: float = WEIGHT_STEP_KG) -> Optional[float]:
    if x is None or not math.isfinite(x):
        return None
    # half-up, so 123.75 -> 125.0 rather than banker's rounding
    return math.floor(x / step + 0.5) * step


def clamp_days(days: Optional[float]) -> int:
    if days is None:
        return 4
    return int(max(1, min(7, days)))


def fmt_number(x: float) -> str:
    """Whole numbers without a decimal point, everything else as repr."""
    if float(x).is_integer():
        return str(int(x))
    return str(x)


def as_given(model: BaseModel) -> Dict[str, Any]:
    """Fields the caller actually sent, nulls included, in declaration order."""
    out = {name: getattr(model, name) for name in type(model).model_fields if name in model.model_fields_set}
    out.update(model.model_extra or {})
    return out


def default_program_id(now: datetime) -> str:
    rng = np.random.default_rng()
    return f"prog_{now.strftime('%Y%m%d')}_{int(rng.integers(0, 10000))}"


class ProgramSynthesizer:
    """Builds a four-slot upper/lower week from a catalog and one-rep-max data.

    Deterministic apart from the program id and timestamp, which come from the
    injected ``id_generator`` and ``clock``.
    """

    def __init__(
        self,
        id_generator: Optional[Callable[[datetime], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.id_generator = id_generator or default_program_id
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def generate_program(
        self,
        user_id: str,
        req: ProgramRequest,
        catalog: List[ExerciseCatalogEntry],
        rms: Dict[int, float],
    ) -> ProgramResult:
        by_key = {e.key: e for e in catalog}
        missing = [k for k in REQUIRED_KEYS if k not in by_key]
        if missing:
            raise CatalogError(f"Exercise catalog is missing: {', '.join(missing)}")

        knee_sensitive = bool(req.constraints.knee_sensitive)
        squat = self._pick_squat(by_key, knee_sensitive)
        strength = req.goal.primary == "strength"

        template = self._build_template(by_key, squat, rms, strength, req.session_minutes)
        days = clamp_days(req.days_per_week)
        # 5-7 days still yields the four slots; no cycling
        program_days = template[:days]

        now = self.clock()
        plan = ProgramPlan(
            program_id=self.id_generator(now),
            user_id=user_id,
            meta=ProgramMeta(
                days_per_week=days,
                session_minutes=req.session_minutes,
                goal=as_given(req.goal),
                constraints=as_given(req.constraints),
                created_at=now.isoformat(),
            ),
            days=program_days,
        )
        summary = self._summarize(req, days, program_days, squat if knee_sensitive else None)
        return ProgramResult(program=plan, summary_text=summary)

    # --- internals ---
    def _pick_squat(self, by_key: Dict[str, ExerciseCatalogEntry], knee_sensitive: bool) -> ExerciseCatalogEntry:
        if knee_sensitive:
            squat = by_key.get("box_squat")
        else:
            squat = by_key.get("back_squat") or by_key.get("box_squat")
        if squat is None:
            raise CatalogError("Exercise catalog has no usable squat variant")
        return squat

    def _main(self, ex: ExerciseCatalogEntry, sets: int, reps: int, pct: float, rms: Dict[int, float]) -> PrescriptionItem:
        one_rm = rms.get(ex.id) or 0
        if one_rm > 0:
            prescription = Prescription(
                sets=sets,
                reps=reps,
                intensity=Intensity(type="percent_1rm", value=pct),
                target_weight_kg=round_to_step(one_rm * pct),
            )
        else:
            prescription = Prescription(
                sets=sets,
                reps=reps,
                intensity=Intensity(type="rpe", value=FALLBACK_MAIN_RPE),
                target_weight_kg=None,
            )
        return PrescriptionItem(exercise_id=ex.id, name=ex.name, type="main", prescription=prescription)

    def _accessory(self, ex: ExerciseCatalogEntry, sets: int, reps: str, rpe: float) -> PrescriptionItem:
        return PrescriptionItem(
            exercise_id=ex.id,
            name=ex.name,
            type="accessory",
            prescription=Prescription(sets=sets, reps=reps, intensity=Intensity(type="rpe", value=rpe)),
        )

    def _build_template(
        self,
        by_key: Dict[str, ExerciseCatalogEntry],
        squat: ExerciseCatalogEntry,
        rms: Dict[int, float],
        strength: bool,
        minutes: float,
    ) -> List[DayPlan]:
        bench, ohp, dead = by_key["bench_press"], by_key["ohp"], by_key["trap_bar_deadlift"]
        row, pull_up = by_key["barbell_row"], by_key["pull_up"]
        rdl, leg_curl, split_squat = by_key["rdl"], by_key["leg_curl"], by_key["split_squat"]

        # goal shifts percentages and rep counts
        bench_pct = 0.82 if strength else 0.75
        squat_pct = 0.80 if strength else 0.72
        dead_pct = 0.80 if strength else 0.70
        ohp_pct = 0.78 if strength else 0.70

        return [
            DayPlan(day_name="Upper A", estimated_minutes=minutes, items=[
                self._main(bench, 5, 3 if strength else 6, bench_pct, rms),
                self._main(ohp, 3, 6, ohp_pct, rms),
                self._accessory(row, 4, "8-10", 8),
                self._accessory(pull_up, 3, "6-10", 8),
            ]),
            DayPlan(day_name="Lower A", estimated_minutes=minutes, items=[
                self._main(squat, 5, 4 if strength else 6, squat_pct, rms),
                self._accessory(rdl, 4, "6-10", 8),
                self._accessory(leg_curl, 3, "10-15", 8),
                self._accessory(split_squat, 3, "8-12/side", 7.5),
            ]),
            DayPlan(day_name="Upper B", estimated_minutes=minutes, items=[
                self._main(bench, 4, 4 if strength else 8, 0.78 if strength else 0.70, rms),
                self._accessory(row, 4, "8-12", 8),
                self._accessory(pull_up, 4, "6-10", 8),
                self._accessory(ohp, 2, "8-10", 7.5),
            ]),
            DayPlan(day_name="Lower B", estimated_minutes=minutes, items=[
                self._main(dead, 4, 3 if strength else 5, dead_pct, rms),
                self._accessory(rdl, 3, "8-10", 8),
                self._accessory(leg_curl, 3, "10-15", 8),
                self._accessory(split_squat, 2, "10-12/side", 7.5),
            ]),
        ]

    def _summarize(
        self,
        req: ProgramRequest,
        days: int,
        program_days: List[DayPlan],
        knee_squat: Optional[ExerciseCatalogEntry],
    ) -> str:
        lines = [
            f"Program: {days} sessions/week, {fmt_number(req.session_minutes)} min, "
            f"goal {req.goal.primary} + {req.goal.secondary or '-'}."
        ]
        if knee_squat is not None:
            lines.append(f"Knee: using the knee-friendly squat variant ({knee_squat.name}).")

        for d in program_days:
            main = [x.name for x in d.items if x.type == "main"]
            acc = [x for x in d.items if x.type == "accessory"]
            lines.append(f"- {d.day_name}: main lifts {', '.join(main)}; accessories {len(acc)}")

        weights = [
            x.prescription.target_weight_kg
            for d in program_days
            for x in d.items
            if x.type == "main" and x.prescription.target_weight_kg is not None
        ]
        if weights:
            lines.append(f"Main lift target weights (kg): {', '.join(fmt_number(w) for w in weights)}")
        else:
            lines.append("Main lift target weights (kg): RPE-based (no 1RM data for some lifts)")
        return "\n".join(lines)
