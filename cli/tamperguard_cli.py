#!/usr/bin/env python3
"""
TamperGuard CLI - Terminal Controller

Command-line interface for running the tamper detection pipeline against
simulated telemetry and inspecting what it did.

Usage:
    tamperguard info                       # Constants and default thresholds
    tamperguard scenarios                  # List built-in scenarios
    tamperguard simulate power-glitch      # Run a scenario, print a summary
    tamperguard forensics combined         # Run, then drain the forensic log
    tamperguard monitor clock-attack       # Live dashboard
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box

from tamperguard import (
    ConfigError, PipelineConfig, Scenario, ScenarioError, ThreatPipeline,
    BUILTIN_SCENARIOS, get_scenario, __version__
)
from tamperguard.config import DEFAULT_WEIGHTS, LADDER
from tamperguard.pipeline import PipelineStatus

from .status_display import (
    console, LiveMonitor, create_header, create_channel_table,
    create_threat_panel, create_response_panel, create_events_table,
    threat_style, response_style, recovery_style
)


def load_scenario(name: Optional[str], scenario_file: Optional[Path]) -> Scenario:
    """Resolve a built-in scenario name or a scenario file."""
    try:
        if scenario_file:
            return Scenario.load(scenario_file)
        return get_scenario(name or 'quiet')
    except ScenarioError as e:
        raise click.ClickException(str(e)) from e


def build_pipeline(config_file: Optional[Path], log_dir: Optional[Path] = None) -> ThreatPipeline:
    """Create a pipeline from an optional JSON config file."""
    try:
        config = PipelineConfig.load(config_file) if config_file else PipelineConfig()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    return ThreatPipeline(config, state_path=log_dir)


def trace_line(status: PipelineStatus) -> Text:
    """One-line summary of a tick."""
    line = Text()
    line.append(f"{status.tick:>6} ", style="dim")
    line.append(f"{status.threat.level.name:<9}", style=threat_style(status.threat.level))
    line.append(f"score {status.threat.score:>3}  ")
    line.append(f"{status.response.level.name:<9}", style=response_style(status.response.level))
    line.append(f"{status.recovery.state.name:<12}", style=recovery_style(status.recovery.state))
    flags = [name for verdict in status.verdicts.values() for name, on in verdict.flags.items() if on]
    if flags:
        line.append(" " + ",".join(flags), style="red")
    return line


# ============================================================================
# Main CLI Group
# ============================================================================

@click.group()
@click.version_option(version=__version__, prog_name='tamperguard')
def cli():
    """
    TamperGuard - Autonomous Tamper Detection and Response

    Run the detection pipeline against simulated hardware telemetry.

    \b
    Examples:
        tamperguard simulate privilege-escalation
        tamperguard simulate --file my_scenario.json --json
        tamperguard monitor combined --refresh 0.02
    """
    pass


# ============================================================================
# Info Commands
# ============================================================================

@cli.command()
def info():
    """Show default thresholds, weights and the response ladder."""
    console.print(create_header())

    cfg = PipelineConfig()
    weights = "\n".join(f"  {name:<18} +{weight}" for name, weight in DEFAULT_WEIGHTS.items())
    ladder = " → ".join(level.name for level in LADDER)
    level_map = ", ".join(f"{k.name}→{v.name}" for k, v in cfg.response.level_map.items())

    info_text = f"""
[bold cyan]TamperGuard[/bold cyan] v{__version__}

[bold]Classifier Thresholds:[/bold]
  LOW={cfg.classifier.low_threshold}  MEDIUM={cfg.classifier.medium_threshold}  HIGH={cfg.classifier.high_threshold}  CRITICAL={cfg.classifier.critical_threshold}
  Hysteresis window: {cfg.classifier.hysteresis_window} ticks

[bold]Flag Weights:[/bold]
{weights}

[bold]Response Ladder:[/bold]
  {ladder}
  {level_map}
  HOLD window: {cfg.response.hold_window} ticks, watchdog: {cfg.response.watchdog_timeout} ticks

[bold]Forensics:[/bold]
  {cfg.forensic.slots} slots, lock-on-write

[bold]Recovery:[/bold]
  step hold {cfg.recovery.step_hold}, integrity timeout {cfg.recovery.integ_timeout}, max retry {cfg.recovery.max_retry}
"""
    console.print(Panel(info_text, title="System Info", border_style="cyan"))


@cli.command()
def scenarios():
    """List built-in scenarios."""
    table = Table(title="Built-in Scenarios", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Ticks", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Description")

    for name, scenario in BUILTIN_SCENARIOS.items():
        table.add_row(name, str(scenario.ticks), str(len(scenario.events)), scenario.description)

    console.print(table)


@cli.command('config')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Write to a file')
def show_config(output: Optional[Path]):
    """Print the default configuration as JSON."""
    config = PipelineConfig()
    if output:
        config.save(output)
        console.print(f"[green]✓ Wrote {output}[/green]")
        return
    click.echo(json.dumps(config.to_dict(), indent=2))


# ============================================================================
# Simulation Commands
# ============================================================================

@cli.command()
@click.argument('name', required=False)
@click.option('--file', '-f', 'scenario_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Scenario JSON file')
@click.option('--ticks', '-n', type=click.IntRange(min=1), help='Override the scenario length')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Pipeline config JSON file')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.option('--log-dir', type=click.Path(file_okay=False, path_type=Path), help='Write the event log here')
@click.option('--trace', is_flag=True, help='Print a line for every tick')
def simulate(name: Optional[str], scenario_file: Optional[Path], ticks: Optional[int],
             config_file: Optional[Path], as_json: bool, log_dir: Optional[Path], trace: bool):
    """Run a scenario through the pipeline."""
    scenario = load_scenario(name, scenario_file)
    pipeline = build_pipeline(config_file, log_dir)

    on_tick = None
    if trace and not as_json:
        def on_tick(status):
            console.print(trace_line(status))

    try:
        status = pipeline.run(scenario.inputs(ticks), on_tick=on_tick)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    health = pipeline.get_health()
    events = pipeline.events.get_entries(limit=10000)

    if as_json:
        output = {
            'scenario': scenario.name,
            'ticks': status.tick,
            'status': status.to_dict(),
            'health': health,
            'events': [e.to_dict() for e in events]
        }
        click.echo(json.dumps(output, indent=2))
        return

    cfg = pipeline.config.classifier
    console.print(create_header(scenario.name))
    console.print(create_events_table(events, "State Transitions"))
    console.print(create_channel_table(status))
    console.print(create_threat_panel(status, cfg.critical_threshold, (1 << cfg.score_width) - 1))
    console.print(create_response_panel(status))

    summary = Table(title="Summary", box=box.ROUNDED, show_header=False)
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Ticks", str(status.tick))
    summary.add_row("Peak threat", health['classifier']['peak_level'])
    summary.add_row("Escalations", str(health['response']['escalations']))
    summary.add_row("Lockdowns", str(health['response']['lockdowns']))
    summary.add_row("Forensic captures", str(health['forensics']['captures']))
    summary.add_row("Dropped captures", str(health['forensics']['dropped_captures']))
    summary.add_row("Recoveries", f"{health['recovery']['successes']} / {health['recovery']['attempts']}")
    console.print(summary)

    if log_dir:
        console.print(f"\n[dim]Event log: {pipeline.events.log_path}[/dim]")


@cli.command()
@click.argument('name', required=False)
@click.option('--file', '-f', 'scenario_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Scenario JSON file')
@click.option('--ticks', '-n', type=click.IntRange(min=1), help='Override the scenario length')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Pipeline config JSON file')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
def forensics(name: Optional[str], scenario_file: Optional[Path], ticks: Optional[int],
              config_file: Optional[Path], as_json: bool):
    """Run a scenario, then read and acknowledge every forensic slot."""
    scenario = load_scenario(name, scenario_file)
    pipeline = build_pipeline(config_file)
    pipeline.run(scenario.inputs(ticks))

    dropped = pipeline.forensics.dropped_captures
    drained = pipeline.forensics.drain()

    if as_json:
        output = {
            'scenario': scenario.name,
            'dropped_captures': dropped,
            'records': [dict(slot=index, **snapshot.to_dict()) for index, snapshot in drained]
        }
        click.echo(json.dumps(output, indent=2))
        return

    if not drained:
        console.print("[yellow]Forensic log is empty[/yellow]")
        return

    table = Table(title=f"Forensic Log - {scenario.name}", box=box.ROUNDED)
    table.add_column("Slot", justify="right", style="cyan")
    table.add_column("Tick", justify="right")
    table.add_column("Threat")
    table.add_column("Attack")
    table.add_column("Score", justify="right")
    table.add_column("Response")
    table.add_column("PC")
    table.add_column("Last Bad PC")

    for index, snapshot in drained:
        table.add_row(
            str(index),
            str(snapshot.tick),
            Text(snapshot.threat_level.name, style=threat_style(snapshot.threat_level)),
            snapshot.attack_type.name,
            str(snapshot.threat_score),
            Text(snapshot.response_level.name, style=response_style(snapshot.response_level)),
            f"0x{snapshot.pc:08X}",
            f"0x{snapshot.last_bad_pc:08X}"
        )

    console.print(table)
    if dropped:
        console.print(f"[yellow]{dropped} capture(s) dropped on locked slots[/yellow]")


@cli.command()
@click.argument('name', required=False)
@click.option('--file', '-f', 'scenario_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Scenario JSON file')
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Pipeline config JSON file')
@click.option('--refresh', '-r', default=0.05, help='Seconds between frames')
@click.option('--ticks-per-frame', default=4, help='Pipeline ticks per frame')
def monitor(name: Optional[str], scenario_file: Optional[Path], config_file: Optional[Path],
            refresh: float, ticks_per_frame: int):
    """Watch a scenario run on a live dashboard."""
    scenario = load_scenario(name, scenario_file)
    pipeline = build_pipeline(config_file)
    live = LiveMonitor(pipeline, scenario)
    try:
        live.run(refresh_rate=refresh, ticks_per_frame=max(1, ticks_per_frame))
    except KeyboardInterrupt:
        live.stop()
        console.print("\n[yellow]Monitor stopped[/yellow]")


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == '__main__':
    cli()
