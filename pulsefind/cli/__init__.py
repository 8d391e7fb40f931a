"""CLI entrypoint for pulsefind."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from .. import __version__
from ..config import MatchingMode, get_config
from ..errors import PulseFindError
from ..matching.corroboration import build_profile, corroboration_score
from ..processor.core import analyze_buffer, scan_upload
from ..processor.preprocessor import preprocess, preprocess_with_metrics
from ..processor.segmentation import select_segments
from ..utils import setup_logging

app = typer.Typer(
    name="pulsefind",
    help="Find published songs that use a beat",
    no_args_is_help=True,
)


def _read_audio(file_path: Path) -> bytes:
    if not file_path.is_file():
        typer.echo(f"Error: File not found: {file_path}", err=True)
        raise typer.Exit(code=1)
    return file_path.read_bytes()


@app.command("version")
def version() -> None:
    """Print the current version of pulsefind."""
    typer.echo(f"pulsefind version v{__version__}")


@app.command("scan")
def scan(
    file_path: Annotated[Path, typer.Argument(help="Beat to scan")],
    deep: Annotated[bool, typer.Option("--deep", help="Analyze more segments")] = False,
    mode: Annotated[
        MatchingMode, typer.Option("--mode", help="Confidence threshold to apply")
    ] = MatchingMode.LOOSE,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full result as JSON")] = False,
) -> None:
    """Scan a beat and list published tracks that use it.

    Args:
        file_path: Path to the audio file
        deep: Use deep scan segmentation
        mode: Strict or loose matching
        as_json: Emit the raw scan result
    """
    config = get_config()
    setup_logging(config.logging)
    data = _read_audio(file_path)

    try:
        result = asyncio.run(
            scan_upload(
                data,
                filename=file_path.name,
                deep_scan=deep,
                matching_mode=mode,
                config=config,
            )
        )
    except PulseFindError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    metrics = result.metrics
    typer.echo(
        f"Analyzed {len(result.segments)} segment(s), "
        + f"fingerprinted {metrics.segments_succeeded}/{metrics.segments_attempted} "
        + f"in {metrics.total_ms / 1000:.1f}s (tempo {metrics.tempo_bpm} BPM)"
    )
    if metrics.failed_sources:
        typer.echo(f"Unavailable sources: {', '.join(metrics.failed_sources)}", err=True)
    if metrics.rate_limited_sources:
        typer.echo(f"Rate limited: {', '.join(metrics.rate_limited_sources)}", err=True)

    if not result.matches:
        typer.echo(f"No matches at or above the {mode.value} threshold.")
        return

    for index, match in enumerate(result.matches, start=1):
        sources = ", ".join(s.value for s in match.sources)
        typer.echo(f"{index:2d}. {match.artist} - {match.title} [{match.confidence}%] ({sources})")
        link = match.spotify_url or match.youtube_url or match.external_url
        if link:
            typer.echo(f"    {link}")


@app.command("analyze")
def analyze(file_path: Annotated[Path, typer.Argument(help="Audio file to analyze")]) -> None:
    """Print signal analysis for a file without contacting any match source.

    Args:
        file_path: Path to the audio file
    """
    config = get_config()
    setup_logging(config.logging)
    data = _read_audio(file_path)

    try:
        buffer, metrics = preprocess_with_metrics(data, config.preprocess)
        segments = select_segments(buffer, config.segments.deep_count, deep_scan=True)
        analysis = analyze_buffer(buffer, segments, config)
    except PulseFindError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Duration:     {metrics.original_duration:.1f}s -> {buffer.duration:.1f}s")
    typer.echo(f"Silence trim: {metrics.silence_trimmed_ms:.0f}ms")
    typer.echo(f"Quality:      {metrics.quality_score:.2f}")
    typer.echo(f"Tempo:        {analysis.tempo_bpm} BPM")
    typer.echo(f"Pitch shift:  {analysis.pitch_shift:+.1f} semitones")
    typer.echo(f"Fingerprint:  {analysis.fingerprint}")
    features = analysis.features
    typer.echo(
        f"Spectral:     centroid {features.centroid:.0f} Hz, rolloff {features.rolloff:.0f} Hz, "
        + f"flux {features.flux:.4f}, zcr {features.zcr:.4f}"
    )
    typer.echo(f"Onsets:       {analysis.onset_density:.2f} per second")
    typer.echo(
        f"Thresholds:   strict {analysis.thresholds.strict}%, loose {analysis.thresholds.loose}%"
    )
    typer.echo(f"              {analysis.thresholds.explanation}")
    typer.echo("Segments:")
    for segment in segments:
        typer.echo(
            f"  {segment.offset:7.1f}s +{segment.duration:5.1f}s  "
            + f"[{segment.priority.value:<6}] {segment.name}"
        )


@app.command("compare")
def compare(
    first: Annotated[Path, typer.Argument(help="Reference audio file")],
    second: Annotated[Path, typer.Argument(help="Audio file to compare")],
) -> None:
    """Compare two recordings by timbre embedding and rhythmic alignment.

    Args:
        first: Reference audio file
        second: Audio file to compare against it
    """
    config = get_config()
    setup_logging(config.logging)

    try:
        a = preprocess(_read_audio(first), config.preprocess)
        b = preprocess(_read_audio(second), config.preprocess)
    except PulseFindError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    score, similarity, alignment = corroboration_score(
        build_profile(a.samples, a.sample_rate), build_profile(b.samples, b.sample_rate)
    )

    typer.echo(f"Embedding similarity: {similarity:.3f}")
    typer.echo(f"Alignment score:      {alignment:.3f}")
    typer.echo(f"Combined score:       {score:.0f}/100")


def main() -> None:
    """Main CLI entrypoint."""
    # Load .env file if it exists (doesn't override existing env vars)
    _ = load_dotenv()
    app()


if __name__ == "__main__":
    main()
