"""
GrowSync Backend - Heuristic Analysis Tests
============================================
"""

import pytest

from growsync.schemas.analyze import Job
from growsync.services.analysis import analyze_job, next_step_for, severity_for, trend_for


@pytest.fixture
def make_job(job_factory):
    def _make(**overrides) -> Job:
        return Job.model_validate(job_factory(**overrides))

    return _make


class TestAnalyzeJob:
    def test_baseline_vegetative(self, make_job):
        wb = analyze_job(make_job(stage="vegetative", angle="canopy"))

        # DLI target 32 - 1 = 31 (within tolerance), VPD midpoint 1.05 (in range)
        assert wb.dli_mol == 31.0
        assert wb.vpd_kpa == 1.05
        assert wb.health == 85
        assert wb.severity == "Low"
        assert wb.dli_ok is True
        assert wb.vpd_ok is True
        assert wb.co2_ok is True
        assert wb.trend == "Improving"
        assert wb.next_step == "Raise light"
        assert wb.summary == (
            "Vegetative growth looks strong Canopy height appears uniform. "
            "Health score at 85. DLI tracking at 31.0 mol with VPD 1.05 kPa."
        )

    def test_unknown_stage_falls_back_to_vegetative_targets(self, make_job):
        wb = analyze_job(make_job(stage="mystery"))
        assert wb.dli_mol == 31.0
        # No stage-specific step for an unknown stage; health 85 → "None"
        assert wb.next_step == "None"

    def test_photoperiod_drives_dli(self, make_job):
        wb = analyze_job(make_job(stage="flower", photoperiod_h=12))
        assert wb.dli_mol == pytest.approx(26.4)
        # |26.4 - 38| > 8
        assert wb.dli_ok is False
        assert wb.health == 73

    def test_pests_and_dry_air(self, make_job):
        wb = analyze_job(make_job(notes="Spider mites found, leaves crispy"))

        assert wb.vpd_kpa == 1.4
        assert wb.vpd_ok is False
        # 85 - 10 (VPD) - 20 (pests)
        assert wb.health == 55
        assert wb.severity == "High"
        assert wb.next_step == "Defol"
        assert wb.trend == "Declining"
        assert wb.summary.endswith("Notes: Spider mites found, leaves crispy")

    def test_critical_health_flushes(self, make_job):
        wb = analyze_job(make_job(notes="mites, yellow leaves, dim and dry", photoperiod_h=4))
        assert wb.severity == "Critical"
        assert wb.next_step == "Flush"
        assert wb.health >= 10

    def test_co2_mention_clears_co2_ok(self, make_job):
        assert analyze_job(make_job(notes="CO2 tank empty")).co2_ok is False

    def test_notes_trend_keywords_win(self, make_job):
        assert analyze_job(make_job(notes="mites but improving")).trend == "Improving"
        assert analyze_job(make_job(notes="getting worse")).trend == "Declining"

    def test_deterministic(self, make_job):
        job = make_job(notes="vigorous growth", stage="clone")
        assert analyze_job(job) == analyze_job(job)

    def test_health_is_clamped(self, make_job):
        wb = analyze_job(make_job(notes="excellent vigorous", stage="seedling"))
        assert 10 <= wb.health <= 100


class TestRules:
    @pytest.mark.parametrize("health,expected", [(100, "Low"), (80, "Low"), (79, "Medium"), (60, "Medium"), (59, "High"), (40, "High"), (39, "Critical")])
    def test_severity_thresholds(self, health, expected):
        assert severity_for(health) == expected

    def test_raise_keyword(self, make_job):
        assert next_step_for(make_job(stage="flower", notes="raise the lamp"), 85, "Low") == "Raise light"

    def test_stage_step(self, make_job):
        assert next_step_for(make_job(stage="clone"), 70, "Medium") == "IPM"

    def test_feed_when_unhealthy_without_stage(self, make_job):
        assert next_step_for(make_job(stage=None), 70, "Medium") == "Feed"

    @pytest.mark.parametrize("health,expected", [(80, "Improving"), (70, "Stable"), (55, "Declining")])
    def test_trend_thresholds(self, make_job, health, expected):
        assert trend_for(make_job(), health) == expected
