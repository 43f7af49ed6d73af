"""Command-line interface for the training projection tool."""

import json
import logging
import sys
from pathlib import Path

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import config
from .analysis.controls import resolve_effective_projection_controls
from .analysis.event_recovery import compute_event_recovery_profile
from .analysis.goals import ProjectionInputError, parse_target
from .analysis import plan_service

console = Console()


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def load_request(path: str) -> dict:
    with open(Path(path)) as f:
        return json.load(f)


def readiness_style(score: float) -> str:
    if score >= 75:
        return "green"
    elif score >= 55:
        return "yellow"
    else:
        return "red"


def print_projection(projection: dict, title: str):
    """Render a projection dictionary as summary panel plus tables."""
    composite = projection["composite_readiness"]
    feasibility = projection["feasibility_metadata"]
    score = composite["readiness_score"]
    style = readiness_style(score)

    summary = (
        f"Readiness: [{style}]{score}[/{style}] "
        f"(confidence {composite['readiness_confidence']}, band {feasibility['readiness_band']})\n"
        f"Start CTL/ATL: {projection['start_ctl']:.1f} / {projection['start_atl']:.1f}  "
        f"Evidence: {projection['evidence_state']}\n"
        f"Envelope: {projection['capacity_envelope']['envelope_state']}  "
        f"Durability: {projection['durability']['durability_score']}  "
        f"Demand gap: {feasibility['demand_gap_weekly_tss']:.0f} TSS/week"
    )
    console.print(Panel(summary, title=title, box=box.ROUNDED))

    table = Table(title="Weekly Plan", box=box.ROUNDED)
    table.add_column("Week", style="black", width=4)
    table.add_column("Start", width=10)
    table.add_column("Phase", style="blue")
    table.add_column("Pattern", style="yellow")
    table.add_column("Requested", style="magenta")
    table.add_column("Planned", style="magenta")
    table.add_column("CTL", style="blue")
    table.add_column("ATL", style="red")
    table.add_column("Clamp", style="red")

    for week in projection["microcycles"]:
        clamps = []
        if week["tss_ramp_clamped"]:
            clamps.append("TSS")
        if week["ctl_ramp_clamped"]:
            clamps.append("CTL")
        table.add_row(
            str(week["week_index"] + 1),
            week["start_date"],
            week["phase"],
            week["pattern"],
            f"{week['requested_weekly_tss']:.0f}",
            f"{week['planned_weekly_tss']:.0f}",
            f"{week['ctl_end']:.1f}",
            f"{week['atl_end']:.1f}",
            ",".join(clamps),
        )
    console.print(table)

    if projection["goal_assessments"]:
        goals_table = Table(title="Goals", box=box.ROUNDED)
        goals_table.add_column("Goal", style="black")
        goals_table.add_column("Date", width=10)
        goals_table.add_column("Priority", style="yellow")
        goals_table.add_column("CTL", style="blue")
        goals_table.add_column("State", style="green")
        goals_table.add_column("Attainment", style="magenta")
        goals_table.add_column("Goal Readiness")

        for goal in projection["goal_assessments"]:
            goal_style = readiness_style(goal["goal_readiness_score"])
            goals_table.add_row(
                goal["goal_id"] + (" ⚠" if goal["conflicting"] else ""),
                goal["target_date"],
                str(goal["priority"]),
                f"{goal['projected_ctl']:.1f}",
                str(goal["state_readiness_score"]),
                str(goal["target_attainment_score"]),
                f"[{goal_style}]{goal['goal_readiness_score']}[/{goal_style}]",
            )
        console.print(goals_table)

    codes = composite["readiness_rationale_codes"]
    if codes:
        console.print(f"[black]Rationale: {', '.join(codes)}[/black]")
    if projection.get("no_history"):
        reasons = projection["no_history"]["reasons"]
        console.print(f"[black]No-history anchor: {', '.join(reasons)}[/black]")


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to LOG_LEVEL)")
def cli(log_level):
    """Training plan projection and readiness scoring."""
    setup_logging(log_level or config.LOG_LEVEL)


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the raw projection as JSON")
def preview(request_file, as_json):
    """Project a plan request without storing it."""
    try:
        projection = plan_service.preview_projection(load_request(request_file))
    except ProjectionInputError as e:
        console.print(f"[red]❌ Invalid request: {escape(str(e))}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(projection, indent=2, sort_keys=True))
        return
    print_projection(projection, "📈 Projection Preview")


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False))
def create(request_file):
    """Project a plan request and store it."""
    try:
        result = plan_service.create_projection(load_request(request_file))
    except ProjectionInputError as e:
        console.print(f"[red]❌ Invalid request: {escape(str(e))}[/red]")
        sys.exit(1)

    plan = result["plan"]
    print_projection(result["projection"], f"📈 {plan['name']}")
    console.print(f"[green]✅ Stored plan {plan['id']}[/green]")


@cli.command()
@click.option("--limit", default=20, help="Number of plans to list")
def plans(limit):
    """List stored plans."""
    stored = plan_service.list_plans(limit=limit)
    if not stored:
        console.print("[yellow]No stored plans yet. Run 'training-projection create' first.[/yellow]")
        return

    table = Table(title="Stored Plans", box=box.ROUNDED)
    table.add_column("ID", style="black")
    table.add_column("Name")
    table.add_column("Start", width=10)
    table.add_column("End", width=10)
    table.add_column("Goals", style="yellow")
    table.add_column("Readiness", style="green")
    table.add_column("Created", style="blue")
    for plan in stored:
        table.add_row(
            str(plan["id"]),
            plan["name"] or "",
            plan["start_date"] or "",
            plan["end_date"] or "",
            str(plan["goal_count"]),
            f"{plan['readiness_score']:.0f}" if plan["readiness_score"] is not None else "-",
            (plan["created_at"] or "")[:16],
        )
    console.print(table)


@cli.command()
@click.argument("plan_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Print the stored projection as JSON")
def show(plan_id, as_json):
    """Show a stored plan."""
    stored = plan_service.get_plan(plan_id)
    if stored is None:
        console.print(f"[red]❌ Plan {plan_id} not found[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(stored, indent=2, sort_keys=True))
        return
    print_projection(stored["projection"], f"📈 Plan {plan_id}: {stored['plan']['name']}")


@cli.command()
@click.option("--distance-km", type=float, required=True, help="Race distance in kilometres")
@click.option("--time-min", type=float, required=True, help="Target finish time in minutes")
@click.option("--category", default="run", type=click.Choice(["run", "bike", "swim", "other"]))
def recovery(distance_km, time_min, category):
    """Show the post-event recovery profile for a race."""
    try:
        target = parse_target(
            {
                "target_type": "race_performance",
                "distance_m": distance_km * 1000,
                "target_time_s": time_min * 60,
                "activity_category": category,
            },
            "race",
        )
    except ProjectionInputError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    profile = compute_event_recovery_profile(target)
    table = Table(title=f"Recovery after {distance_km:g} km {category} in {time_min:g} min", box=box.ROUNDED)
    table.add_column("Metric", style="black")
    table.add_column("Value", style="green")
    table.add_row("Full recovery", f"{profile.recovery_days_full} days")
    table.add_row("Functional recovery", f"{profile.recovery_days_functional} days")
    table.add_row("Fatigue intensity", f"{profile.fatigue_intensity:.2f}")
    table.add_row("ATL spike factor", f"{profile.atl_spike_factor:.2f}")
    console.print(table)


@cli.command()
@click.option("--profile", default=None, type=click.Choice(["outcome_first", "balanced", "sustainable"]))
@click.option("--mode", default="simple", type=click.Choice(["simple", "advanced"]))
@click.option("--ambition", type=float, default=None)
@click.option("--risk-tolerance", type=float, default=None)
@click.option("--curvature", type=float, default=None)
@click.option("--curvature-strength", type=float, default=None)
@click.option("--post-goal-recovery-days", type=int, default=None)
def controls(profile, mode, ambition, risk_tolerance, curvature, curvature_strength, post_goal_recovery_days):
    """Show the effective optimizer controls for a profile."""
    safety = {
        "optimization_profile": profile or config.DEFAULT_OPTIMIZATION_PROFILE,
        "post_goal_recovery_days": post_goal_recovery_days,
    }
    advanced = {
        "mode": mode,
        "ambition": ambition,
        "risk_tolerance": risk_tolerance,
        "curvature": curvature,
        "curvature_strength": curvature_strength,
    }
    effective = resolve_effective_projection_controls(safety, config.load_calibration(), advanced)
    data = effective.to_dict()

    table = Table(title=f"Effective Controls ({data['optimization_profile']})", box=box.ROUNDED)
    table.add_column("Setting", style="black")
    table.add_column("Value", style="green")
    table.add_row("Post-goal recovery days", str(data["post_goal_recovery_days"]))
    for section in ("ramp_caps", "optimizer", "curvature", "projection_control"):
        for key, value in data[section].items():
            table.add_row(f"{section}.{key}", str(value))
    console.print(table)


if __name__ == "__main__":
    cli()
