"""
GrowSync Backend - Heuristic Photo Analysis
============================================

What:  Deterministic assessment of one photo job: DLI and VPD estimates,
       a 0-100 health score, severity, trend, next step and a one-paragraph summary.
How:   Stage targets plus keyword checks on the grower's notes. No I/O and no
       randomness, so the same job always yields the same writeback.
Who:   Batch orchestrator, first step of every job.

Stage targets (unknown or missing stage falls back to vegetative):
    stage        DLI target   VPD range (kPa)
    vegetative   32           0.9 - 1.2
    flower       38           1.1 - 1.4
    clone        20           0.8 - 1.0
    seedling     22           0.8 - 1.0
"""

from typing import Dict, NamedTuple, Optional, Tuple

from growsync.schemas.analyze import Job, Writeback


class StageTarget(NamedTuple):
    dli: float
    vpd: Tuple[float, float]
    summary: str


STAGE_TARGETS: Dict[str, StageTarget] = {
    "vegetative": StageTarget(32, (0.9, 1.2), "Vegetative growth looks strong"),
    "flower": StageTarget(38, (1.1, 1.4), "Flower sites filling in"),
    "clone": StageTarget(20, (0.8, 1.0), "Clones acclimating"),
    "seedling": StageTarget(22, (0.8, 1.0), "Seedlings establishing"),
}
DEFAULT_STAGE = "vegetative"

ANGLE_NOTES: Dict[str, str] = {
    "under-canopy": "Under-canopy airflow looks clear.",
    "trichomes": "Trichome development is on track.",
    "bud-site": "Bud site spacing is even across the canopy.",
    "canopy": "Canopy height appears uniform.",
    "full-plant": "Full plant posture is upright and healthy.",
}

NEXT_STEP_BY_STAGE: Dict[str, str] = {
    "vegetative": "Raise light",
    "flower": "Dim",
    "clone": "IPM",
    "seedling": "Feed",
}

LOW_RH_KEYWORDS = ("dry", "crispy", "low humidity")
PEST_KEYWORDS = ("mite", "pest", "thrip", "aphid")

BASE_HEALTH = 85
DLI_TOLERANCE = 4.0
VPD_HEALTH_MARGIN = 0.15


def _stage(job: Job) -> str:
    return (job.stage or "").strip().lower()


def _notes(job: Job) -> str:
    return (job.notes or "").lower()


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def compute_dli(job: Job, target_dli: float) -> float:
    """Photoperiod-based DLI when known, else the stage target nudged by the notes."""
    if job.photoperiod_h is not None:
        intensity = 2.2 if _stage(job) == "flower" else 1.8
        return job.photoperiod_h * intensity

    notes = _notes(job)
    if "dim" in notes or "light burn" in notes:
        return target_dli - 6
    if "stretch" in notes or "lagging" in notes:
        return target_dli + 5
    return target_dli - 1


def compute_vpd(job: Job, vpd_range: Tuple[float, float]) -> float:
    low, high = vpd_range
    notes = _notes(job)
    if _contains_any(notes, LOW_RH_KEYWORDS):
        return high + 0.2
    if "humid" in notes or "wet" in notes:
        return max(low - 0.2, 0.5)
    return (low + high) / 2


def compute_health(
    job: Job,
    dli: float,
    target_dli: float,
    vpd: float,
    vpd_range: Tuple[float, float],
) -> int:
    score = BASE_HEALTH

    dli_diff = abs(dli - target_dli)
    if dli_diff > 8:
        score -= 12
    elif dli_diff > DLI_TOLERANCE:
        score -= 6

    low, high = vpd_range
    if vpd < low - VPD_HEALTH_MARGIN or vpd > high + VPD_HEALTH_MARGIN:
        score -= 10

    notes = _notes(job)
    if _contains_any(notes, PEST_KEYWORDS):
        score -= 20
    if "deficiency" in notes or "yellow" in notes:
        score -= 15
    if "excellent" in notes or "vigorous" in notes:
        score += 5

    return max(10, min(100, score))


def severity_for(health: int) -> str:
    if health >= 80:
        return "Low"
    if health >= 60:
        return "Medium"
    if health >= 40:
        return "High"
    return "Critical"


def build_summary(job: Job, health: int, dli: float, vpd: float, stage_summary: str) -> str:
    parts = [stage_summary]
    angle_note = ANGLE_NOTES.get(job.angle or "")
    if angle_note:
        parts.append(angle_note)
    parts.append(f"Health score at {health}.")
    parts.append(f"DLI tracking at {dli:.1f} mol with VPD {vpd:.2f} kPa.")
    note = (job.notes or "").strip()
    if note:
        parts.append(f"Notes: {note}")
    return " ".join(parts)


def next_step_for(job: Job, health: int, severity: str) -> str:
    if severity == "Critical":
        return "Flush"
    if severity == "High":
        return "Defol"
    if "raise" in _notes(job):
        return "Raise light"
    stage_step: Optional[str] = NEXT_STEP_BY_STAGE.get(_stage(job))
    if stage_step:
        return stage_step
    if health >= BASE_HEALTH:
        return "None"
    return "Feed"


def trend_for(job: Job, health: int) -> str:
    notes = _notes(job)
    if "improv" in notes:
        return "Improving"
    if "wors" in notes:
        return "Declining"
    if health >= 80:
        return "Improving"
    if health <= 55:
        return "Declining"
    return "Stable"


def analyze_job(job: Job) -> Writeback:
    """
    Produce the full writeback for one job.

    The OK flags are judged on the unrounded estimates; DLI is reported with
    one decimal and VPD with two.
    """
    target = STAGE_TARGETS.get(_stage(job), STAGE_TARGETS[DEFAULT_STAGE])

    dli = compute_dli(job, target.dli)
    vpd = compute_vpd(job, target.vpd)
    health = compute_health(job, dli, target.dli, vpd, target.vpd)
    severity = severity_for(health)

    return Writeback(
        summary=build_summary(job, health, dli, vpd, target.summary),
        health=health,
        next_step=next_step_for(job, health, severity),
        vpd_ok=target.vpd[0] <= vpd <= target.vpd[1],
        dli_ok=abs(dli - target.dli) <= DLI_TOLERANCE,
        co2_ok="co2" not in _notes(job),
        trend=trend_for(job, health),
        dli_mol=round(dli, 1),
        vpd_kpa=round(vpd, 2),
        severity=severity,
    )
