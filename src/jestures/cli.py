"""jestures CLI: profile inspection, session replay and benchmarks.

Usage:
    jestures gestures      List a profile's gestures and template counts
    jestures settings      Show or update a profile's recognition settings
    jestures add-template  Store a recorded session as a gesture template
    jestures replay        Feed a recorded session through a profile's recognizer
    jestures benchmark     Measure DTW matching throughput
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import typer

from jestures.dtw import DtwMatcher
from jestures.profiler import PassTiming, RecognitionProfiler
from jestures.recognizer import Recognizer
from jestures.serialization import UserManager
from jestures.session import SamplePlayer
from jestures.settings import SettingsError

app = typer.Typer(
    name="jestures",
    help="DTW template gesture recognition.",
    add_completion=False,
)

PROFILES_OPTION = typer.Option(Path("profiles"), "--profiles", help="Profile directory")
USER_OPTION = typer.Option(..., "--user", "-u", help="User profile name")


def _open_profile(profiles: Path, user: str) -> UserManager:
    manager = UserManager(profiles)
    if user not in manager.list_users():
        typer.echo(f"❌ No profile '{user}' in {profiles}", err=True)
        raise typer.Exit(1)
    manager.load_or_create_user(user)
    return manager


@app.command()
def gestures(profiles: Path = PROFILES_OPTION, user: str = USER_OPTION):
    """List the gestures stored in a profile."""
    manager = _open_profile(profiles, user)
    library = manager.get_dataset_for_recognition()
    if not library:
        typer.echo(f"Profile '{user}' has no gestures yet.")
        return
    for name in sorted(library):
        lengths = [len(t) for t in library[name]]
        typer.echo(f"   {name:20s} templates={len(lengths)}  frames={min(lengths)}-{max(lengths)}")


@app.command()
def settings(
    profiles: Path = PROFILES_OPTION,
    user: str = USER_OPTION,
    dtw_radius: Optional[float] = typer.Option(None, help="Sakoe-Chiba band half-width"),
    min_threshold: Optional[float] = typer.Option(None, help="Minimum DTW distance (exclusive)"),
    max_threshold: Optional[float] = typer.Option(None, help="Maximum DTW distance (exclusive)"),
    update_rate: Optional[int] = typer.Option(None, help="Frames between recognition attempts"),
    min_separation: Optional[float] = typer.Option(None, help="Cooldown in ms after a recognition"),
    match_number: Optional[int] = typer.Option(None, help="Votes a gesture must exceed"),
):
    """Show a profile's recognition settings, applying any given updates."""
    manager = _open_profile(profiles, user)
    current = manager.get_recognition_settings()

    updates = [
        (dtw_radius, current.set_dtw_radius),
        (max_threshold, current.set_max_dtw_threshold),
        (min_threshold, current.set_min_dtw_threshold),
        (update_rate, current.set_update_rate),
        (min_separation, current.set_min_time_separation),
        (match_number, current.set_match_number),
    ]
    changed = False
    try:
        for value, setter in updates:
            if value is not None:
                setter(value)
                changed = True
    except SettingsError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    if changed:
        manager.set_recognition_settings(current)
        typer.echo(f"💾 Saved settings for '{user}'")
    typer.echo(json.dumps(current.to_dict(), indent=2))


@app.command("add-template")
def add_template(
    session: Path = typer.Argument(..., help="Recorded session (.json/.npz)"),
    gesture: str = typer.Argument(..., help="Gesture name"),
    profiles: Path = PROFILES_OPTION,
    user: str = USER_OPTION,
):
    """Store a recorded session as one template of a gesture."""
    if not session.exists():
        typer.echo(f"❌ Session not found: {session}", err=True)
        raise typer.Exit(1)

    manager = UserManager(profiles)
    manager.load_or_create_user(user)
    points = np.array([p for _, p in SamplePlayer.load(session).play()])
    points = points[np.all(np.isfinite(points), axis=1)] if len(points) else points
    if len(points) == 0:
        typer.echo("❌ Session has no usable samples", err=True)
        raise typer.Exit(1)
    manager.add_feature_vector(gesture, points)
    typer.echo(f"✅ Added {len(points)}-frame template to '{gesture}' for '{user}'")


@app.command()
def replay(
    session: Path = typer.Argument(..., help="Recorded session (.json/.npz)"),
    profiles: Path = PROFILES_OPTION,
    user: str = USER_OPTION,
    realtime: bool = typer.Option(False, help="Play at original timing"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Replay a recorded session through a profile's recognizer."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    if not session.exists():
        typer.echo(f"❌ Session not found: {session}", err=True)
        raise typer.Exit(1)

    manager = _open_profile(profiles, user)
    player = SamplePlayer.load(session)
    typer.echo(f"▶️  Replaying {session.name} ({player.sample_count} samples, {player.duration:.1f}s)")

    # Cooldown is judged on session time, not wall time
    session_ms = [0.0]
    recognizer = Recognizer(serializer=manager, clock=lambda: session_ms[0])
    recognizer.load_user_profile(user)

    recognized = []

    def on_gesture(name: str):
        recognized.append(name)
        typer.echo(f"   🤚 {name} at {session_ms[0] / 1000.0:.2f}s")

    recognizer.on_gesture(on_gesture)

    frames = player.play_realtime(speed=speed) if realtime else player.play()
    for timestamp, point in frames:
        session_ms[0] = timestamp * 1000.0
        recognizer.on_sample(point)

    stats = recognizer.stats
    typer.echo(f"\n✅ Replay complete. {len(recognized)} gestures recognized.")
    typer.echo(f"   Passes: {stats.passes}  skipped: {stats.skipped_passes}  rejected samples: {stats.rejected_samples}")


@app.command()
def benchmark(
    iterations: int = typer.Option(200, help="Number of windows to match"),
    templates: int = typer.Option(20, help="Templates in the synthetic library"),
    window: int = typer.Option(30, help="Window length in frames"),
    radius: float = typer.Option(5.0, help="DTW band radius"),
):
    """Measure DTW matching latency against a synthetic library."""
    typer.echo(f"⚡ Running benchmark: {iterations} windows x {templates} templates, radius {radius}")

    rng = np.random.default_rng(42)
    library = [rng.random((window + rng.integers(-5, 6), 2)) for _ in range(templates)]
    matcher = DtwMatcher(radius)
    profiler = RecognitionProfiler(history=max(iterations, 1))

    for _ in range(iterations):
        candidate = rng.random((window, 2))
        timing = PassTiming()
        with timing.stage("matching"):
            for template in library:
                matcher.distance(template, candidate)
        timing.templates = len(library)
        profiler.record(timing)

    summary = profiler.summary()
    if not summary:
        typer.echo("Nothing to measure.")
        return

    typer.echo("\n📊 Results:")
    typer.echo(f"   Average pass:  {summary['avg_ms']:.2f} ms")
    typer.echo(f"   P95 pass:      {summary['p95_ms']:.2f} ms")
    if summary["per_template_ms"] is not None:
        typer.echo(f"   Per template:  {summary['per_template_ms']:.3f} ms")


def main():
    app()


if __name__ == "__main__":
    main()
