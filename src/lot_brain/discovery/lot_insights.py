"""Insight and recommendation rules over LotMetrics.

Every rule is a threshold comparison against ``InsightThresholds``; there is
no state and no learning. Output is ranked so callers can take the head of
each list.
"""

from __future__ import annotations

import logging

from lot_brain.discovery.lot_models import (
    AnalysisConfig,
    InsightThresholds,
    Insight,
    Lot,
    LotMetrics,
    Recommendation,
)

logger = logging.getLogger(__name__)

_SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}

WIP_PATH = "Assembly (WIP)"
FG_PATH = "Packaging (FG)"
MIXED_PATH = "Mixed Path"


# ---------------------------------------------------------------------------
# Helper outputs
# ---------------------------------------------------------------------------


def critical_path_name(metrics: LotMetrics, thresholds: InsightThresholds | None = None) -> str:
    """Stage carrying the bulk of issues, or "Mixed Path" when neither dominates."""
    ratio = (thresholds or InsightThresholds()).critical_path_ratio
    wip, fg = metrics.wip_issue_count, metrics.fg_issue_count
    if wip > fg * ratio:
        return WIP_PATH
    if fg > wip * ratio:
        return FG_PATH
    return MIXED_PATH


def data_confidence_score(lots: dict[str, Lot]) -> int:
    """0-100 confidence in the run, from lot count and Process coverage."""
    score = 75
    total = len(lots)
    if total < 5:
        score -= 25
    elif total > 20:
        score += 10

    if total:
        missing = sum(1 for lot in lots.values() if not lot.process_records)
        missing_pct = missing / total * 100
        if missing_pct > 50:
            score -= 20
        elif missing_pct > 20:
            score -= 10

    return max(0, min(100, score))


def rft_deviation(metrics: LotMetrics, thresholds: InsightThresholds | None = None) -> str:
    """Signed distance from the baseline RFT rate, e.g. ``"-4.2%"``."""
    baseline = (thresholds or InsightThresholds()).baseline_rft_pct
    return f"{metrics.lot_rft_percentage - baseline:+.1f}%"


def risk_potential(metrics: LotMetrics) -> str:
    pct = metrics.lot_rft_percentage
    if pct < 60:
        return "High"
    if pct < 75:
        return "Medium"
    if pct < 90:
        return "Low"
    return "Minimal"


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


def _rft_insight(metrics: LotMetrics, t: InsightThresholds) -> Insight | None:
    if not metrics.total_lots:
        return None
    pct = metrics.lot_rft_percentage
    if pct < t.rft_high_risk_pct:
        severity = "high"
    elif pct < t.rft_target_pct:
        severity = "medium"
    else:
        severity = "low"
    decided = metrics.rft_lots + metrics.non_rft_lots
    return Insight(
        title=f"Lot-Based RFT: {pct:.1f}%",
        description=(
            f"{metrics.rft_lots} out of {decided} evaluable lots passed RFT. "
            f"{metrics.non_rft_lots} lots had at least one RFT failure "
            f"({rft_deviation(metrics, t)} vs the {t.baseline_rft_pct:.0f}% baseline)."
        ),
        category="Performance",
        severity=severity,
    )


def _critical_path_insight(metrics: LotMetrics, t: InsightThresholds) -> Insight | None:
    if not (metrics.wip_issue_count or metrics.fg_issue_count):
        return None
    path = critical_path_name(metrics, t)
    return Insight(
        title=f"Critical Path: {path}",
        description=(
            f"{metrics.wip_issue_count} issues in WIP (Assembly) vs "
            f"{metrics.fg_issue_count} in FG (Packaging)."
        ),
        category="Process Stage",
        severity="low" if path == MIXED_PATH else "medium",
    )


def _cycle_insights(metrics: LotMetrics, t: InsightThresholds) -> list[Insight]:
    out: list[Insight] = []
    if not metrics.lots_with_cycle_time:
        return out

    avg = metrics.avg_cycle_time_days
    if avg > t.cycle_high_days:
        severity = "high"
    elif avg > t.cycle_medium_days:
        severity = "medium"
    else:
        severity = "low"
    out.append(Insight(
        title=f"Average Cycle Time: {avg:.1f} days",
        description=f"Measured over {metrics.lots_with_cycle_time} of {metrics.total_lots} lots with usable dates.",
        category="Cycle Time",
        severity=severity,
    ))

    passing = metrics.avg_cycle_time_by_rft_status.get("passing", 0.0)
    failing = metrics.avg_cycle_time_by_rft_status.get("failing", 0.0)
    gap = abs(failing - passing)
    if passing and failing and gap > t.cycle_gap_report_days:
        out.append(Insight(
            title=f"Cycle Time Impact: {gap:.1f} days",
            description=(
                f"Failed lots take {'longer' if failing > passing else 'less time'} than passed lots "
                f"({failing:.1f}d vs {passing:.1f}d)."
            ),
            category="Cycle Time",
            severity="high" if gap > t.cycle_gap_high_days else "medium",
        ))
    return out


def _issue_insights(metrics: LotMetrics) -> list[Insight]:
    out: list[Insight] = []
    if metrics.top_internal_issues:
        top = metrics.top_internal_issues[0]
        total = sum(metrics.issue_category_histogram.values())
        out.append(Insight(
            title=f"Top Error Type: {top.category}",
            description=f"{top.category} is the most common internal error, {top.count} of {total} counted issues.",
            category="Form Errors",
            severity="medium",
        ))
    if metrics.top_external_issues:
        top = metrics.top_external_issues[0]
        out.append(Insight(
            title=f"Most Common External Feedback: {top.category}",
            description=f"{top.count} external records were logged as {top.category}.",
            category="External Feedback",
            severity="medium",
        ))
    if metrics.top_form_errors:
        top = metrics.top_form_errors[0]
        out.append(Insight(
            title=f"Most Error-Prone Form: {top.category}",
            description=f"{top.count} errors were recorded on {top.category} forms.",
            category="Form Errors",
            severity="low",
        ))
    return out


def _data_quality_insights(
    metrics: LotMetrics,
    unassigned_records: int,
    confidence: int | None,
) -> list[Insight]:
    out: list[Insight] = []
    if metrics.indeterminate_lots:
        out.append(Insight(
            title=f"Indeterminate Lots: {metrics.indeterminate_lots}",
            description="These lots have no internal or external quality records and are excluded from the RFT rate.",
            category="Data Quality",
            severity="low",
        ))
    if unassigned_records:
        share = unassigned_records / metrics.total_records * 100 if metrics.total_records else 0.0
        out.append(Insight(
            title=f"Unassigned Records: {unassigned_records}",
            description=f"{share:.1f}% of records could not be placed in a lot and are not in lot-level figures.",
            category="Data Quality",
            severity="medium" if share > 10 else "low",
        ))
    if confidence is not None and confidence < 75:
        out.append(Insight(
            title=f"Data Confidence: {confidence}/100",
            description="Few lots or lots without Process records reduce confidence in these figures.",
            category="Data Quality",
            severity="medium" if confidence < 50 else "low",
        ))
    return out


def generate_insights(
    metrics: LotMetrics,
    config: AnalysisConfig | None = None,
    *,
    unassigned_records: int = 0,
    confidence: int | None = None,
) -> list[Insight]:
    """Apply every insight rule and rank the results high to low."""
    t = (config or AnalysisConfig()).thresholds
    insights: list[Insight] = []

    for insight in (_rft_insight(metrics, t), _critical_path_insight(metrics, t)):
        if insight is not None:
            insights.append(insight)
    insights.extend(_cycle_insights(metrics, t))
    insights.extend(_issue_insights(metrics))
    insights.extend(_data_quality_insights(metrics, unassigned_records, confidence))

    insights.sort(key=lambda i: _SEVERITY_RANK.get(i.severity, len(_SEVERITY_RANK)))
    logger.debug("Generated %d insights", len(insights))
    return insights


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def generate_recommendations(
    metrics: LotMetrics,
    config: AnalysisConfig | None = None,
    *,
    unmapped_work_orders: int = 0,
) -> list[Recommendation]:
    """Suggest actions, highest priority first."""
    config = config or AnalysisConfig()
    t = config.thresholds
    recs: list[Recommendation] = []

    decided = metrics.rft_lots + metrics.non_rft_lots
    if decided and metrics.lot_rft_percentage < t.rft_improvement_pct:
        path = critical_path_name(metrics, t)
        focus = "issues across both stages" if path == MIXED_PATH else f"{path} issues"
        recs.append(Recommendation(
            title="Improve Lot RFT Rate",
            description=(
                f"Lot RFT is {metrics.lot_rft_percentage:.1f}%, below the "
                f"{t.rft_improvement_pct:.0f}% improvement line. Focus on {focus}."
            ),
            category="Performance",
            impact="High",
            difficulty="Medium",
            payoff="Immediate",
            priority=90,
        ))

    passing = metrics.avg_cycle_time_by_rft_status.get("passing", 0.0)
    failing = metrics.avg_cycle_time_by_rft_status.get("failing", 0.0)
    if passing and failing and failing > passing + t.cycle_gap_recommend_days:
        recs.append(Recommendation(
            title="Reduce Correction Cycle Time",
            description=(
                f"Failing lots take {failing - passing:.1f} days longer than passing lots. "
                "Standardize correction workflows to reduce this gap."
            ),
            category="Cycle Time",
            impact="Medium",
            difficulty="Medium",
            payoff="Short-term",
            priority=70,
        ))

    for issue in metrics.top_external_issues:
        if config.is_excluded_category(issue.category):
            continue
        recs.append(Recommendation(
            title=f'Address "{issue.category}" Feedback',
            description=f"{issue.count} external records cite {issue.category}. Review the root cause with the affected sites.",
            category="External Feedback",
            impact="High",
            difficulty="Medium",
            payoff="Short-term",
            priority=65,
        ))
        break

    if metrics.top_form_errors:
        form = metrics.top_form_errors[0].category
        recs.append(Recommendation(
            title=f"Improve {form} Form Completion",
            description=f"{form} forms have the most errors. Provide additional training or revise the form design.",
            category="Form Errors",
            impact="Medium",
            difficulty="Low",
            payoff="Short-term",
            priority=60,
        ))

    if unmapped_work_orders:
        recs.append(Recommendation(
            title="Resolve Unmapped Work Orders",
            description=(
                f"{unmapped_work_orders} internal work orders could not be tied to a lot. "
                "Record the lot number on internal RFT forms."
            ),
            category="Data Quality",
            impact="Medium",
            difficulty="Low",
            payoff="Immediate",
            priority=50,
        ))

    recs.sort(key=lambda r: -r.priority)
    return recs
