"""
TamperGuard - Status Display

Rich terminal rendering of pipeline status: channel table, threat and
response panels, event trail and a live dashboard.
"""

import time
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.layout import Layout
from rich.live import Live
from rich.text import Text
from rich import box

from tamperguard import ThreatPipeline, Scenario, __version__
from tamperguard.core import Severity, ThreatLevel, ResponseLevel, RecoveryState
from tamperguard.events import EventEntry
from tamperguard.pipeline import PipelineStatus


console = Console()

SEVERITY_STYLES = {
    Severity.NONE: "green",
    Severity.LOW: "yellow",
    Severity.MEDIUM: "dark_orange",
    Severity.HIGH: "red",
}

THREAT_STYLES = {
    ThreatLevel.NONE: "green",
    ThreatLevel.LOW: "yellow",
    ThreatLevel.MEDIUM: "dark_orange",
    ThreatLevel.HIGH: "red",
    ThreatLevel.CRITICAL: "bold white on red",
}

RESPONSE_STYLES = {
    ResponseLevel.IDLE: "green",
    ResponseLevel.LOG: "cyan",
    ResponseLevel.ALERT: "yellow",
    ResponseLevel.THROTTLE: "dark_orange",
    ResponseLevel.ISOLATE: "red",
    ResponseLevel.LOCKDOWN: "bold white on red",
    ResponseLevel.RECOVER: "magenta",
    ResponseLevel.HOLD: "blue",
}


def threat_style(level: ThreatLevel) -> str:
    return THREAT_STYLES.get(level, "white")


def response_style(level: ResponseLevel) -> str:
    return RESPONSE_STYLES.get(level, "white")


def recovery_style(state: RecoveryState) -> str:
    if state == RecoveryState.PERM_LOCK:
        return "bold white on red"
    if state == RecoveryState.FAILED:
        return "red"
    if state == RecoveryState.IDLE:
        return "green"
    return "magenta"


def create_score_bar(score: int, maximum: int, width: int = 40) -> Text:
    """Threat score as a bar, colored by how close it is to the maximum."""
    fraction = min(1.0, score / maximum) if maximum else 0.0
    filled = int(fraction * width)

    if fraction > 0.75:
        color, symbol = "red", "█"
    elif fraction > 0.3:
        color, symbol = "dark_orange", "▓"
    elif fraction > 0.05:
        color, symbol = "yellow", "▒"
    else:
        color, symbol = "green", "░"

    bar = Text()
    bar.append(symbol * filled, style=color)
    bar.append("░" * (width - filled), style="dim")
    return bar


def create_channel_table(status: PipelineStatus) -> Table:
    """Per-channel verdicts."""
    table = Table(
        title="Channels",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan"
    )

    table.add_column("Channel", style="cyan", width=10)
    table.add_column("Ready", width=6)
    table.add_column("Severity", width=9)
    table.add_column("Readings")
    table.add_column("Flags")

    for name, verdict in status.verdicts.items():
        ready = Text("●", style="green") if verdict.ready else Text("○ warm", style="dim")
        readings = ", ".join(
            f"{r.name}={r.sample} (base {r.baseline}, Δ{r.delta})" for r in verdict.readings
        )
        flags = ", ".join(n for n, on in verdict.flags.items() if on) or "-"
        table.add_row(
            name,
            ready,
            Text(verdict.severity.name, style=SEVERITY_STYLES[verdict.severity]),
            readings,
            Text(flags, style="red" if verdict.anomaly else "dim")
        )

    return table


def create_threat_panel(status: PipelineStatus, critical_threshold: int, score_max: int) -> Panel:
    """Fusion and classifier state."""
    threat = status.threat
    fused = status.fused

    content = Text()
    content.append("Threat Level: ", style="bold")
    content.append(f"{threat.level.name}\n", style=threat_style(threat.level))

    content.append("Classifier: ", style="bold")
    content.append(f"{threat.state.name}")
    if threat.hysteresis_count:
        content.append(f" ({threat.hysteresis_count})", style="dim")
    content.append("\n")

    content.append("Attack Type: ", style="bold")
    content.append(f"{threat.attack_type.name}\n")

    content.append("Fused: ", style="bold")
    content.append(f"{fused.score} {fused.severity.name}")
    if fused.multi_domain:
        content.append("  multi-domain", style="yellow")
    if fused.correlated_attack:
        content.append("  CORRELATED", style="red bold")
    content.append("\n\n")

    content.append("Score: ", style="bold")
    content.append(f"{threat.score} / {critical_threshold}\n")
    content.append(create_score_bar(threat.score, score_max))

    return Panel(
        content,
        title="[bold red]Threat[/bold red]",
        border_style="red" if threat.level >= ThreatLevel.HIGH else "cyan",
        box=box.DOUBLE
    )


def create_response_panel(status: PipelineStatus) -> Panel:
    """Response ladder, forensic log and recovery sequencer."""
    response = status.response
    forensic = status.forensic
    recovery = status.recovery

    content = Text()
    content.append("Response: ", style="bold")
    content.append(f"{response.level.name}", style=response_style(response.level))
    if response.level == ResponseLevel.HOLD:
        content.append(f" ({response.held_level.name}, {response.hold_count})", style="dim")
    content.append("\n")

    content.append("Actions: ", style="bold")
    content.append(", ".join(response.actions.active()) or "none")
    content.append("\n")

    content.append("Watchdog: ", style="bold")
    content.append(f"{response.watchdog_count}\n")

    content.append("\nForensics: ", style="bold")
    content.append(f"{forensic.occupancy} locked")
    if forensic.log_full:
        content.append(" FULL", style="red bold")
    if forensic.dropped_captures:
        content.append(f"  {forensic.dropped_captures} dropped", style="yellow")
    content.append("\n")

    content.append("Recovery: ", style="bold")
    content.append(f"{recovery.state.name}", style=recovery_style(recovery.state))
    if recovery.retry_count:
        content.append(f"  retry {recovery.retry_count}", style="yellow")

    return Panel(
        content,
        title="[bold magenta]Response[/bold magenta]",
        border_style="magenta",
        box=box.DOUBLE
    )


def create_events_table(entries: List[EventEntry], title: str = "Events") -> Table:
    """Recent event trail."""
    table = Table(title=title, box=box.SIMPLE, header_style="bold cyan")
    table.add_column("Tick", justify="right", style="dim", width=6)
    table.add_column("Event", style="cyan")
    table.add_column("Details")

    for entry in entries:
        details = entry.details
        if 'from' in details and 'to' in details:
            text = f"{details['from']} → {details['to']}"
            extra = {k: v for k, v in details.items() if k not in ('from', 'to')}
            if extra:
                text += "  " + ", ".join(f"{k}={v}" for k, v in extra.items())
        else:
            text = ", ".join(f"{k}={v}" for k, v in details.items())
        table.add_row(str(entry.tick), entry.event, text)

    return table


def create_header(scenario: Optional[str] = None) -> Panel:
    """Create the header panel."""
    header = Text()
    header.append("TAMPERGUARD", style="bold cyan")
    header.append(" - ", style="dim")
    header.append("Autonomous Tamper Detection and Response\n", style="italic")
    header.append(f"v{__version__}", style="magenta dim")
    if scenario:
        header.append(f"  scenario: {scenario}", style="dim")

    return Panel(header, box=box.HEAVY, style="cyan")


class LiveMonitor:
    """
    Live pipeline dashboard for the terminal.

    Ticks the pipeline through a scenario and redraws after every batch.
    """

    def __init__(self, pipeline: ThreatPipeline, scenario: Scenario):
        self.pipeline = pipeline
        self.scenario = scenario
        self.running = False

    def _create_layout(self) -> Layout:
        """Create the monitor layout."""
        layout = Layout()

        layout.split(
            Layout(name="header", size=4),
            Layout(name="body"),
            Layout(name="channels", size=9),
            Layout(name="footer", size=10)
        )

        layout["body"].split_row(
            Layout(name="threat", ratio=1),
            Layout(name="response", ratio=1)
        )

        return layout

    def _update_layout(self, layout: Layout):
        """Update layout with current data."""
        status = self.pipeline.status
        cfg = self.pipeline.config.classifier

        layout["header"].update(create_header(f"{self.scenario.name} @ tick {status.tick}"))
        layout["threat"].update(create_threat_panel(status, cfg.critical_threshold, (1 << cfg.score_width) - 1))
        layout["response"].update(create_response_panel(status))
        layout["channels"].update(create_channel_table(status))
        layout["footer"].update(create_events_table(self.pipeline.events.get_entries(limit=6), "Recent Events"))

    def run(self, refresh_rate: float = 0.05, ticks_per_frame: int = 4, ticks: Optional[int] = None):
        """Run the scenario under a live display."""
        self.running = True
        layout = self._create_layout()

        with Live(layout, console=console, refresh_per_second=20):
            for count, tick_inputs in enumerate(self.scenario.inputs(ticks), start=1):
                if not self.running:
                    break
                self.pipeline.tick(tick_inputs)
                if count % ticks_per_frame == 0:
                    self._update_layout(layout)
                    time.sleep(refresh_rate)
            self._update_layout(layout)

        self.running = False

    def stop(self):
        """Stop the monitor."""
        self.running = False
