"""Tests for data quality reports."""

import pytest

from migration.migrate_data import DataMigration
from migration.quality import HIGH, LOW, MEDIUM, DataQualityReporter, build_recommendations, compute_trend

from conftest import KREUZWERTHEIM, VIKTORIA, TEAM_ERSTE, TEAM_HUNDHEIM, TEAM_KREUZWERTHEIM, TEAM_UNBEKANNT, MISSING_TEAM


@pytest.fixture
def reporter(context):
    return DataQualityReporter(context)


class TestRecommendations:

    def test_ranking(self):
        grouped = [
            {"type": "unmappable-team", "severity": "warning", "description": "", "count": 5},
            {"type": "orphaned-reference", "severity": "error", "description": "", "count": 1},
            {"type": "self-play", "severity": "error", "description": "", "count": 3},
        ]
        progress = {
            "matches": {"total": 10, "migrated": 8, "remaining": 2, "progressPct": 80.0},
            "standings": {"total": 4, "migrated": 4, "remaining": 0, "progressPct": 100.0},
        }

        recommendations = build_recommendations(grouped, progress)

        assert [(r["priority"], r["issueType"]) for r in recommendations] == [
            (HIGH, "self-play"),
            (HIGH, "orphaned-reference"),
            (MEDIUM, "unmappable-team"),
            (LOW, None),
        ]
        assert "2 matches" in recommendations[-1]["action"]

    def test_no_issues_no_recommendations(self):
        progress = {"matches": {"remaining": 0}, "standings": {"remaining": 0}}
        assert build_recommendations([], progress) == []

    def test_first_report_has_no_trend(self):
        assert compute_trend({"issues": [], "healthScore": 100.0}, None) == {"previousGenerated": None}


class TestDataQualityReporter:

    async def test_report_contents(self, reporter, make_match, make_entry):
        await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        await make_match(MISSING_TEAM, TEAM_HUNDHEIM)
        await make_entry("Unbekannt", team_id=TEAM_UNBEKANNT)

        report = await reporter.generate_report()
        data = report.to_dict()

        assert data["matches"] == {"total": 2, "migrated": 0, "remaining": 2, "progressPct": 0.0}
        assert data["standings"]["remaining"] == 1
        assert {g["type"]: g["count"] for g in data["issues"]} == {
            "orphaned-reference": 1, "unmappable-team": 1,
        }
        assert data["healthScore"] == round(100 / 3, 2)
        assert data["healthBand"] == "needs-attention"
        assert [r["priority"] for r in report.recommendations] == [HIGH, MEDIUM, LOW, LOW]
        assert report.recommendations[0]["issueType"] == "orphaned-reference"
        assert report.trend["previousGenerated"] is None

    async def test_trend_against_previous_report(self, reporter, context, make_match, make_entry):
        await make_match(TEAM_ERSTE, TEAM_KREUZWERTHEIM)
        await make_entry("SV Viktoria Wertheim", club_id=VIKTORIA)
        await make_entry("TSV Kreuzwertheim", club_id=KREUZWERTHEIM)
        first = await reporter.generate_report()

        await DataMigration(context).run("matches")
        second = await reporter.generate_report()

        trend = second.trend
        assert trend["previousGenerated"] == first.to_dict()["lastGenerated"]
        assert trend["progressDeltas"]["matches"] == 100.0
        assert trend["runs"] == {"completed": 1}
        assert second.recommendations == []

    async def test_report_without_persisting(self, reporter, store):
        await reporter.generate_report(persist=False)

        assert await store.reports.count() == 0
