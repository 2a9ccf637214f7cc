"""Data quality reporting.

Combines validator output with migration progress into a report that is
stored, so each new report can show the trend against the previous one.
"""

import logging
from collections import Counter
from datetime import timedelta
from typing import Dict, Any, List, Optional

from database.models import utcnow
from .context import MigrationContext
from .migrate_data import DataMigration
from .records import ISSUE_DESCRIPTIONS, IssueType, MigrationType, Severity

logger = logging.getLogger(__name__)

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

PRIORITY_ORDER = {HIGH: 0, MEDIUM: 1, LOW: 2}

ISSUE_ACTIONS: Dict[IssueType, str] = {
    IssueType.MIXED_REFERENCE: "Repair records that reference teams and clubs at once, then migrate them again",
    IssueType.MISSING_REFERENCE: "Run cleanup to remove matches without any team or club reference",
    IssueType.ORPHANED_REFERENCE: "Run cleanup to remove records pointing at missing teams, clubs or leagues",
    IssueType.UNMAPPABLE_TEAM: "Add mapping rules or activate the target clubs for unmappable teams",
    IssueType.INVALID_CLUB_LEAGUE: "Assign clubs to their leagues or reactivate them",
    IssueType.SELF_PLAY: "Correct matches whose home and away side are the same club",
    IssueType.NAME_MISMATCH: "Migrate standings so display names follow the club names",
    IssueType.DUPLICATE_ENTRY: "Run cleanup to remove duplicate standings entries",
    IssueType.CROSS_INCONSISTENCY: "Add missing clubs to the league standings",
}


class DataQualityReport:
    """Container for one data quality report."""

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload

    @property
    def health_score(self) -> float:
        return self.payload["healthScore"]

    @property
    def health_band(self) -> str:
        return self.payload["healthBand"]

    @property
    def recommendations(self) -> List[Dict[str, Any]]:
        return self.payload["recommendations"]

    @property
    def trend(self) -> Dict[str, Any]:
        return self.payload["trend"]

    def to_dict(self) -> Dict[str, Any]:
        return self.payload


def group_issues(issues) -> List[Dict[str, Any]]:
    """Count issues per type, most frequent first."""
    counts = Counter(issue.type for issue in issues)
    severities = {}
    for issue in issues:
        if issue.severity == Severity.ERROR or issue.type not in severities:
            severities[issue.type] = issue.severity
    return [
        {
            "type": issue_type.value,
            "severity": severities[issue_type].value,
            "description": ISSUE_DESCRIPTIONS[issue_type],
            "count": count,
        }
        for issue_type, count in sorted(counts.items(), key=lambda item: (-item[1], item[0].value))
    ]


def build_recommendations(grouped: List[Dict[str, Any]], progress: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Rank recommendations.

    Error-severity issue types give HIGH, warning-only types MEDIUM and
    unmigrated records LOW recommendations.
    """
    recommendations = []
    for group in grouped:
        if group["severity"] == Severity.ERROR.value:
            priority = HIGH
        elif group["severity"] == Severity.WARNING.value:
            priority = MEDIUM
        else:
            continue
        recommendations.append({
            "priority": priority,
            "issueType": group["type"],
            "count": group["count"],
            "action": ISSUE_ACTIONS[IssueType(group["type"])],
        })

    for migration_type, stats in progress.items():
        if stats["remaining"] > 0:
            recommendations.append({
                "priority": LOW,
                "issueType": None,
                "count": stats["remaining"],
                "action": f"Migrate the remaining {stats['remaining']} {migration_type} records",
            })

    return sorted(
        recommendations,
        key=lambda r: (PRIORITY_ORDER[r["priority"]], -r["count"], r["issueType"] or "", r["action"]),
    )


def compute_trend(current: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Difference between two report payloads."""
    if previous is None:
        return {"previousGenerated": None}

    current_issues = {g["type"]: g["count"] for g in current["issues"]}
    previous_issues = {g["type"]: g["count"] for g in previous.get("issues", [])}
    return {
        "previousGenerated": previous.get("lastGenerated"),
        "healthScoreDelta": round(current["healthScore"] - previous.get("healthScore", 0.0), 2),
        "issueDeltas": {
            issue_type: current_issues.get(issue_type, 0) - previous_issues.get(issue_type, 0)
            for issue_type in sorted(set(current_issues) | set(previous_issues))
        },
        "progressDeltas": {
            migration_type.value: round(
                current[migration_type.value]["progressPct"]
                - previous.get(migration_type.value, {}).get("progressPct", 0.0),
                2,
            )
            for migration_type in MigrationType
        },
    }


class DataQualityReporter:
    """Generates and stores data quality reports."""

    def __init__(self, context: MigrationContext):
        self.context = context
        self.store = context.store
        self.migration = DataMigration(context)

    async def generate_report(self, period_days: int = 7, persist: bool = True) -> DataQualityReport:
        """
        Generate a data quality report.

        Args:
            period_days: Window for the trend and the run counts
            persist: Store the report for future trends

        Returns:
            DataQualityReport
        """
        now = utcnow()
        since = now - timedelta(days=period_days)

        validation = await self.context.validator.validate_all()
        progress = {
            migration_type.value: await self.migration.get_progress(migration_type.value)
            for migration_type in MigrationType
        }
        grouped = group_issues(validation.combined.issues)

        payload: Dict[str, Any] = {
            "lastGenerated": now.isoformat(),
            "periodDays": period_days,
            **progress,
            "issues": grouped,
            "errors": len(validation.combined.errors),
            "warnings": len(validation.combined.warnings),
            "healthScore": validation.health_score,
            "healthBand": validation.combined.health_band.value,
            "recommendations": build_recommendations(grouped, progress),
        }

        previous = await self.store.reports.latest_since(since)
        payload["trend"] = compute_trend(payload, previous.payload if previous else None)
        payload["trend"]["runs"] = await self.context.history.counts_by_status_since(since)

        if persist:
            await self.store.reports.save(payload, payload["healthScore"], now)

        logger.info(
            f"📊 Data quality report: health {payload['healthScore']:.1f} ({payload['healthBand']}), "
            f"{len(grouped)} issue types, {len(payload['recommendations'])} recommendations"
        )
        return DataQualityReport(payload)
