"""
End-to-end demonstration of the wound analytics pipeline.

This script walks through:
1. Configuration loading and validation
2. Pre-CTP coverage compliance for a slowly healing DFU
3. Depth progression, graduated alerting and review for a deepening wound
4. Alert fatigue suppression across repeated evaluations
5. Medicare LCD pre-eligibility checks

Run with: uv run python run_demo.py
"""

from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.medicare_lcd.eligibility import perform_pre_eligibility_checks
from woundcore.config import get_config, print_config_summary, validate_config
from woundcore.domain.models import (
    ConservativeCare,
    DiabeticStatus,
    EncounterRecord,
    EpisodeRecord,
    TreatmentPhase,
    WoundDetails,
)
from woundcore.services import AlertHistoryTracker, WoundMonitoringService, build_context_profile

console = Console()

START = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


def _encounter(day: int, length: float, width: float, depth: float | None) -> EncounterRecord:
    measurements: dict[str, object] = {"length": length, "width": width, "unit": "cm"}
    if depth is not None:
        measurements["depth"] = depth
        measurements["depthUnit"] = "mm"
    return EncounterRecord(
        encounter_id=f"enc-{day:03d}",
        date=START + timedelta(days=day),
        wound_details=WoundDetails(location="plantar foot", measurements=measurements),
        conservative_care=ConservativeCare(offloading=True, debridement=True, moisture_management=True),
        diabetic_status=DiabeticStatus.DIABETIC,
    )


def healing_dfu() -> tuple[EpisodeRecord, list[EncounterRecord]]:
    """12 cm² wound shrinking to 9.8 cm² over 29 days of standard care."""
    episode = EpisodeRecord(
        id="demo-healing",
        wound_type="DFU",
        wound_location="plantar foot",
        primary_diagnosis="E11.621 Type 2 diabetes mellitus with foot ulcer",
        episode_start_date=START,
    )
    encounters = [
        EncounterRecord(
            encounter_id=f"enc-{day:03d}",
            date=START + timedelta(days=day),
            wound_details=WoundDetails(
                location="plantar foot",
                measurements={"length": 4.0, "width": 3.0, "area": area, "method": "rectangular"},
            ),
            conservative_care=ConservativeCare(
                offloading=True, debridement=True, moisture_management=True
            ),
            diabetic_status=DiabeticStatus.DIABETIC,
        )
        for day, area in ((0, 12.0), (14, 11.0), (29, 9.8))
    ]
    return episode, encounters


def deepening_wound() -> tuple[EpisodeRecord, list[EncounterRecord]]:
    """Depth 3 -> 5 -> 8 -> 12 -> 18 mm in weekly visits on the foot."""
    episode = EpisodeRecord(
        id="demo-deepening",
        wound_type="DFU",
        wound_location="foot",
        primary_diagnosis="E11.621",
        episode_start_date=START,
    )
    encounters = [
        _encounter(week * 7, 3.0, 2.0, depth)
        for week, depth in enumerate((3.0, 5.0, 8.0, 12.0, 18.0))
    ]
    return episode, encounters


def demo_configuration() -> bool:
    console.print(Panel("🔧 Configuration", style="blue"))
    try:
        validate_config()
        print_config_summary()
        return True
    except ValueError as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


def demo_compliance(service: WoundMonitoringService) -> None:
    console.print(Panel("📐 Pre-CTP Area Reduction", style="blue"))
    episode, encounters = healing_dfu()
    result = service.evaluate_episode(
        episode,
        encounters,
        phase=TreatmentPhase.PRE_PRODUCT,
        as_of=START + timedelta(days=30),
    )
    compliance = result.compliance

    table = Table(title="Period Windows")
    table.add_column("Target day")
    table.add_column("Selected day")
    table.add_column("Area (cm²)")
    table.add_column("Reduction")
    for window in compliance.period_windows:
        table.add_row(
            str(window.target_day),
            str(window.selected_day) if window.selected_day is not None else "-",
            f"{window.period_area:.1f}" if window.period_area is not None else "-",
            f"{window.reduction_pct:.1f}%" if window.reduction_pct is not None else "-",
        )
    console.print(table)
    console.print(f"Status: {compliance.overall_compliance.value}", style="green")
    for note in compliance.regulatory_notes:
        console.print(f"  {note}")


def demo_progression(service: WoundMonitoringService) -> None:
    console.print(Panel("📉 Depth Progression and Alerts", style="blue"))
    episode, encounters = deepening_wound()
    context = build_context_profile(episode, encounters, age=72)
    result = service.evaluate_episode(
        episode,
        encounters,
        context=context,
        provider_id="provider-demo",
        as_of=START + timedelta(days=29),
        assigned_clinician="clinician-demo",
    )
    progression = result.progression

    summary = Table(title="Progression Summary")
    summary.add_column("Metric")
    summary.add_column("Value")
    summary.add_row("Depth trend", progression.depth_trend.value)
    summary.add_row(
        "Depth velocity",
        f"{progression.depth_velocity:.2f} mm/week" if progression.depth_velocity is not None else "-",
    )
    summary.add_row(
        "Thickness",
        progression.thickness.classification.value if progression.thickness else "-",
    )
    summary.add_row("Breached tiers", ", ".join(t.value for t in result.breached_tiers) or "none")
    severity = result.safety_override.severity
    summary.add_row("Safety override", severity.value if severity else "none")
    console.print(summary)

    if result.alert is not None:
        console.print(
            f"🚨 {result.alert.urgency_tier.value.upper()} alert "
            f"(confidence {result.alert.confidence_metrics.adjusted_confidence:.1%}, "
            f"delivered={result.alert_delivered})",
            style="red",
        )
        if result.review is not None:
            console.print(
                f"  Review {result.review.status.value}, due {result.review.response_due_at.isoformat()}"
            )
    else:
        console.print("No alert emitted", style="green")

    console.print(f"\n[dim]{result.coverage_disclaimer}[/dim]")


def demo_fatigue() -> None:
    console.print(Panel("🔕 Alert Fatigue", style="blue"))
    service = WoundMonitoringService(tracker=AlertHistoryTracker())
    episode, encounters = deepening_wound()
    for attempt in range(1, 4):
        result = service.evaluate_episode(
            episode,
            encounters,
            provider_id="provider-fatigue",
            as_of=START + timedelta(days=29, hours=attempt),
        )
        if result.fatigue is None:
            console.print(f"Evaluation {attempt}: no alert")
        elif result.alert_delivered:
            bypass = " (suppression bypassed)" if result.fatigue.bypassed_suppression else ""
            console.print(f"Evaluation {attempt}: delivered{bypass}", style="green")
        else:
            console.print(
                f"Evaluation {attempt}: suppressed - {'; '.join(result.fatigue.suppressed_reasons)}",
                style="yellow",
            )


def demo_eligibility() -> None:
    console.print(Panel("🏥 Medicare LCD Pre-Eligibility", style="blue"))
    episode, encounters = healing_dfu()
    result = perform_pre_eligibility_checks(episode, encounters)

    table = Table(title=f"Episode {result.episode_id}")
    table.add_column("Check")
    table.add_column("Result")
    table.add_row("Wound type", result.wound_type_check.reason)
    table.add_row("Conservative care", result.conservative_care_check.reason)
    table.add_row("Measurements", result.measurement_check.reason)
    table.add_row("Area reduction", result.area_reduction_check.overall_compliance.value)
    if result.wagner_assessment is not None:
        table.add_row(
            "Wagner grade",
            f"{result.wagner_assessment.grade.value} ({result.wagner_assessment.severity})",
        )
    console.print(table)
    style = "green" if result.overall_eligible else "red"
    console.print(f"Overall eligible: {result.overall_eligible}", style=style)
    for reason in result.failure_reasons:
        console.print(f"  - {reason}", style="yellow")


def main() -> None:
    console.print(Panel.fit("🩹 Wound Analytics Demo", style="bold magenta"))
    if not demo_configuration():
        return

    service = WoundMonitoringService(config=get_config())
    demo_compliance(service)
    demo_progression(service)
    demo_fatigue()
    demo_eligibility()


if __name__ == "__main__":
    main()
