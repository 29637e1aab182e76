"""
CLI entry point for the finger-chord encoding analysis.

Commands:
  - 'fit'          cross-validate the model family for every configured
                   region and save one fit table per region
  - 'summarize'    normalise saved fit tables and report region × model
                   means and standard errors
  - 'list-models'  show the model family
All parameters come from the YAML config; command-line options only
narrow the subjects and regions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="fsi-encoder",
    help="Cross-validated encoding models for finger-chord activity patterns.",
    add_completion=False,
)
console = Console()


def _split(option: Optional[str]) -> list[str]:
    return [s.strip() for s in option.split(",") if s.strip()] if option else []


@app.command()
def fit(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    subjects: Optional[str] = typer.Option(None, "--subjects", "-s", help="Comma-separated subject IDs (overrides config)"),
    regions: Optional[str] = typer.Option(None, "--regions", "-r", help="Comma-separated region names (subset of config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate config and print plan without running"),
) -> None:
    """Fit the model family and save fit tables.

    For each region: load the region prior and participant patterns →
    leave-one-run-out fits of every model → normalise between null and
    noise ceiling → save fits.csv + provenance + config snapshot.
    """
    from fsi_encoder.config import load_config
    from fsi_encoder.errors import ConfigurationError
    from fsi_encoder.models.family import build_model_family
    from fsi_encoder.utils.logging import configure_logging

    try:
        cfg = load_config(config)
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Invalid config:[/bold red] {e}")
        raise typer.Exit(code=1)

    configure_logging(cfg.log_level, cfg.paths.log_dir)

    if subjects:
        cfg.subjects = _split(subjects)
    if regions:
        wanted = _split(regions)
        unknown = sorted(set(wanted) - {r.name for r in cfg.regions})
        if unknown:
            console.print(f"[bold red]Regions not in config:[/bold red] {unknown}")
            raise typer.Exit(code=1)
        cfg.regions = [r for r in cfg.regions if r.name in wanted]

    try:
        models = build_model_family(cfg.models)
    except ConfigurationError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(code=1)

    if dry_run:
        console.print("[bold green]Config validated successfully.[/bold green]")
        console.print(f"  Subjects: {cfg.subjects}")
        console.print(f"  Regions: {[r.name for r in cfg.regions]}")
        console.print(f"  Models: {[m.name for m in models]}")
        console.print(f"  Optimizer: {cfg.optimizer.method}, max_iter={cfg.optimizer.max_iter}")
        console.print(
            f"  Compute: backend={cfg.compute.backend}, n_jobs={cfg.compute.n_jobs}, "
            f"fold_n_jobs={cfg.compute.fold_n_jobs}"
        )
        return

    _run_fit(cfg)


def _run_fit(cfg) -> None:
    """Core fit logic, one region at a time."""
    from functools import partial

    from fsi_encoder.config import build_provenance, config_to_dict
    from fsi_encoder.eval.crossval import iter_region_fits
    from fsi_encoder.eval.normalize import normalize_fits
    from fsi_encoder.io.artifacts import region_diagnostics, save_fit_table
    from fsi_encoder.io.patterns import load_region
    from fsi_encoder.models.base import ModelKind

    provenance = build_provenance(cfg)
    config_snap = config_to_dict(cfg)
    displays = {r.name: r.display for r in cfg.regions}

    for result in iter_region_fits(partial(load_region, cfg.paths.data_dir), cfg):
        console.print(f"\n[bold]Region {displays[result.region]}[/bold]")
        frame = result.frame
        fitted_models = set(frame["model"])
        if {ModelKind.NULL.value, ModelKind.NOISE_CEILING.value} <= fitted_models:
            frame = normalize_fits(frame)

        save_fit_table(
            frame,
            output_dir=cfg.paths.output_dir,
            region=result.region,
            provenance=provenance,
            config_snapshot=config_snap,
            diagnostics=region_diagnostics(result),
        )

        n_total = frame["subject"].nunique() + len(result.failures)
        console.print(f"    ✓ {n_total - len(result.failures)}/{n_total} participants fitted")
        for subject, reason in result.failures.items():
            console.print(f"    [red]✗ sub-{subject}: {reason}[/red]")

    console.print("\n[bold green]Fit complete.[/bold green]")


@app.command()
def summarize(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
) -> None:
    """Summarise saved fit tables per region and model.

    Normalised fits (null = 0, noise ceiling = 1) are averaged across
    participants; the summary table is written to ``tables/``.
    """
    from fsi_encoder.config import load_config
    from fsi_encoder.errors import ConfigurationError
    from fsi_encoder.eval.normalize import summarize_fits
    from fsi_encoder.io.artifacts import load_fit_table, load_provenance
    from fsi_encoder.utils.logging import configure_logging, get_logger

    cfg = load_config(config)
    configure_logging(cfg.log_level, cfg.paths.log_dir)
    logger = get_logger(__name__)

    tables_dir = cfg.paths.output_dir / "tables"
    for region_cfg in cfg.regions:
        try:
            frame = load_fit_table(cfg.paths.output_dir, region_cfg.name)
        except FileNotFoundError as e:
            logger.warning("Region %s: %s", region_cfg.name, e)
            continue

        try:
            summary = summarize_fits(frame)
        except ConfigurationError as e:
            console.print(f"  [red]{region_cfg.name}: {e}[/red]")
            continue

        tables_dir.mkdir(parents=True, exist_ok=True)
        summary.to_csv(tables_dir / f"summary_region-{region_cfg.name}.csv", index=False)

        prov = load_provenance(cfg.paths.output_dir, region_cfg.name)
        version = prov.get("fsi_encoder_version", "?")
        config_hash = str(prov.get("config_hash", "?"))[:12]
        table = Table(title=f"Region {region_cfg.display}", caption=f"fsi_encoder {version}, config {config_hash}")
        for col in ("model", "n", "r_test_mean", "r_test_sem", "r_norm_mean", "r_norm_sem"):
            table.add_column(col, justify="left" if col == "model" else "right")
        for row in summary.itertuples(index=False):
            table.add_row(
                row.model,
                str(row.n),
                f"{row.r_test_mean:.4f}",
                f"{row.r_test_sem:.4f}",
                f"{row.r_norm_mean:.4f}",
                f"{row.r_norm_sem:.4f}",
            )
        console.print(table)

    console.print("\n[bold green]Summary complete.[/bold green]")


@app.command("list-models")
def list_models_cmd() -> None:
    """List the model family with ids, feature counts and parameter counts."""
    from fsi_encoder.design.chords import N_CHORDS, design_matrix
    from fsi_encoder.models.family import build_model_family

    table = Table(title="Model family")
    table.add_column("id", justify="right")
    table.add_column("name")
    table.add_column("features", justify="right")
    table.add_column("nonlinear params", justify="right")
    for model in build_model_family("all"):
        design = model.kind.design
        n_features = design_matrix(design).shape[1] if design else N_CHORDS
        table.add_row(str(model.model_id), model.name, str(n_features), str(model.n_params))
    console.print(table)


if __name__ == "__main__":
    app()
