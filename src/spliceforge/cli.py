"""Command-line interface for SpliceForge.

This module provides the main entry point for the spliceforge CLI tool.
It uses Click to define commands for each pipeline stage.

Commands:
    predict: Predict transcript features from RNA-seq alignments
    build: Build a splice graph from predicted or annotated features
    events: Decompose a splice graph into splice events and variants
    count: Count compatible fragments per splice graph feature
    analyze: Run the complete pipeline

Example:
    $ spliceforge --help
    $ spliceforge predict -s samples.tsv -o features.bed
    $ spliceforge build -f features.bed -o graph.bed
    $ spliceforge events -g graph.bed -o variants.tsv
    $ spliceforge count -s samples.tsv -g graph.bed -o counts.tsv
    $ spliceforge analyze -s samples.tsv -o results/
"""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from spliceforge import __version__
from spliceforge.errors import ConfigurationError, SpliceForgeError

# Initialize rich console for pretty output
console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="spliceforge")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output.")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="YAML configuration file.",
)
@click.option(
    "-j",
    "--workers",
    type=int,
    help="Number of parallel workers (overrides the configuration).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Write debug log to this file.",
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    config_path: Optional[Path],
    workers: Optional[int],
    log_file: Optional[Path],
) -> None:
    """SpliceForge: splice graphs, splice events and alternative splicing counts.

    SpliceForge predicts transcript features from RNA-seq alignments,
    builds per-locus splice graphs, decomposes them into splice events
    and counts compatible fragments for features and variants.
    """
    from spliceforge.config import Config
    from spliceforge.utils.logging import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    setup_logging(verbosity=-1 if quiet else (2 if verbose else 1), log_file=log_file)

    try:
        config = Config.load(config_path)
        if workers is not None:
            config.parallel.max_workers = workers
        config.validate()
    except ConfigurationError as e:
        _fail(str(e))

    ctx.obj["config"] = config


def _load_samples(samples: Path):
    from spliceforge.io.samples import load_sample_info

    try:
        return load_sample_info(samples)
    except ConfigurationError as e:
        _fail(str(e))


def _parse_regions(region: tuple[str, ...]):
    from spliceforge.utils.regions import parse_region

    if not region:
        return None
    try:
        return [parse_region(r) for r in region]
    except ValueError as e:
        _fail(str(e))


def _report_failures(failures: dict, what: str) -> None:
    for name, message in sorted(failures.items()):
        console.print(f"[yellow]Warning:[/yellow] {what} {name} failed: {message}")


# =============================================================================
# predict command
# =============================================================================


@main.command()
@click.option(
    "-s",
    "--samples",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Sample table (TSV with sample_name and file_bam columns).",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output BED file of predicted features.",
)
@click.option(
    "-r",
    "--region",
    multiple=True,
    help="Region to scan (chr1:1000-2000 or chr1). May be repeated.",
)
@click.option(
    "--min-junction-count",
    type=int,
    help="Minimum fragments supporting a junction (overrides the configuration).",
)
@click.pass_context
def predict(
    ctx: click.Context,
    samples: Path,
    output: Path,
    region: tuple[str, ...],
    min_junction_count: Optional[int],
) -> None:
    """Predict transcript features from RNA-seq alignments.

    Junctions are kept when supported by enough fragments; exons are
    inferred from read coverage between junction flanks. Predictions of
    all samples are merged and terminal exons processed once.

    \b
    Examples:
        $ spliceforge predict -s samples.tsv -o features.bed
        $ spliceforge -j 4 predict -s samples.tsv -r chr1 -o chr1.bed
    """
    from spliceforge.io.bed import to_interval_records, write_bed
    from spliceforge.pipeline import predict_features

    config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    if min_junction_count is not None:
        config.prediction.min_junction_count = min_junction_count

    sample_list = _load_samples(samples)
    regions = _parse_regions(region)

    try:
        result = predict_features(sample_list, config, regions)
    except SpliceForgeError as e:
        _fail(str(e))

    _report_failures(result.failures, "Sample")
    n = write_bed(to_interval_records(result.features), output)
    if not quiet:
        console.print(f"[green]Wrote {n:,} features:[/green] {output}")


# =============================================================================
# build command
# =============================================================================


@main.command()
@click.option(
    "-f",
    "--features",
    type=click.Path(exists=True, path_type=Path),
    help="BED file of transcript features (from 'spliceforge predict').",
)
@click.option(
    "-a",
    "--annotation",
    type=click.Path(exists=True, path_type=Path),
    help="GFF3 annotation to import transcript features from.",
)
@click.option(
    "-r",
    "--region",
    help="Restrict annotation import to a region.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output BED file of splice graph features.",
)
@click.pass_context
def build(
    ctx: click.Context,
    features: Optional[Path],
    annotation: Optional[Path],
    region: Optional[str],
    output: Path,
) -> None:
    """Build a splice graph from transcript features.

    Features from --features and --annotation are merged when both are
    given. The output holds exon bins (E), junctions (J), donor (D) and
    acceptor (A) sites with their feature IDs.

    \b
    Examples:
        $ spliceforge build -f features.bed -o graph.bed
        $ spliceforge build -a genes.gff3 -r chr1 -o graph.bed
    """
    from spliceforge.core.graph import build_splice_graph
    from spliceforge.core.merge import merge_features
    from spliceforge.io.bed import to_interval_records, write_bed

    quiet = ctx.obj.get("quiet", False)

    if features is None and annotation is None:
        _fail("Provide --features and/or --annotation")

    try:
        feature_sets = _input_features(features, annotation, region)
        splice_graph = build_splice_graph(merge_features(*feature_sets))
    except SpliceForgeError as e:
        _fail(str(e))

    for error in splice_graph.errors:
        console.print(f"[yellow]Warning:[/yellow] locus {error.region} excluded: {error.message}")

    n = write_bed(to_interval_records(splice_graph.features), output)
    if not quiet:
        console.print(
            f"[green]Wrote {n:,} features in {len(splice_graph.gene_ids):,} loci:[/green] {output}"
        )


def _input_features(features: Optional[Path], annotation: Optional[Path], region: Optional[str]):
    from spliceforge.io.bed import from_interval_records, read_bed
    from spliceforge.io.gff import import_transcripts

    feature_sets = []
    if features is not None:
        feature_sets.append(from_interval_records(read_bed(features)))
    if annotation is not None:
        try:
            feature_sets.append(import_transcripts(annotation, region))
        except ValueError as e:
            _fail(str(e))
    return feature_sets


def _load_graph(graph: Path):
    from spliceforge.core.graph import build_splice_graph
    from spliceforge.io.bed import from_interval_records, read_bed

    try:
        return build_splice_graph(from_interval_records(read_bed(graph)))
    except SpliceForgeError as e:
        _fail(str(e))


# =============================================================================
# events command
# =============================================================================


@main.command()
@click.option(
    "-g",
    "--graph",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="BED file of splice graph features (from 'spliceforge build').",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output TSV with one row per splice variant.",
)
@click.option(
    "--max-variants",
    type=int,
    help="Skip events with more variants (overrides the configuration).",
)
@click.pass_context
def events(
    ctx: click.Context,
    graph: Path,
    output: Path,
    max_variants: Optional[int],
) -> None:
    """Decompose a splice graph into splice events and variants.

    \b
    Examples:
        $ spliceforge events -g graph.bed -o variants.tsv
    """
    from spliceforge.core.events import find_events
    from spliceforge.pipeline import make_executor

    config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    if max_variants is not None:
        config.events.max_variants = max_variants
        try:
            config.validate()
        except ConfigurationError as e:
            _fail(str(e))

    splice_graph = _load_graph(graph)
    event_set = find_events(splice_graph, config.events.max_variants, make_executor(config.parallel))
    event_set.write_tsv(output)

    for skipped in event_set.skipped:
        console.print(
            f"[yellow]Warning:[/yellow] locus {skipped.gene_id} event "
            f"{skipped.from_node}->{skipped.to_node} skipped ({skipped.n_paths} variants)"
        )
    if not quiet:
        console.print(
            f"[green]Wrote {len(event_set.variants):,} variants of "
            f"{len(event_set.events):,} events:[/green] {output}"
        )


# =============================================================================
# count command
# =============================================================================


@main.command()
@click.option(
    "-s",
    "--samples",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Sample table (TSV with sample_name and file_bam columns).",
)
@click.option(
    "-g",
    "--graph",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="BED file of splice graph features.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output TSV of fragment counts (features x samples).",
)
@click.option(
    "--fpkm",
    type=click.Path(path_type=Path),
    help="Also write FPKM values to this TSV.",
)
@click.pass_context
def count(
    ctx: click.Context,
    samples: Path,
    graph: Path,
    output: Path,
    fpkm: Optional[Path],
) -> None:
    """Count compatible fragments for every splice graph feature.

    \b
    Examples:
        $ spliceforge count -s samples.tsv -g graph.bed -o counts.tsv --fpkm fpkm.tsv
    """
    from spliceforge.core.quantify import count_features
    from spliceforge.pipeline import make_executor

    config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    sample_list = _load_samples(samples)
    splice_graph = _load_graph(graph)

    result = count_features(splice_graph, sample_list, config.counting, make_executor(config.parallel))
    _report_failures(result.failures, "Sample")

    row_info = _feature_info(splice_graph)
    result.matrix.write_tsv(output, "counts", row_info)
    if fpkm:
        result.matrix.write_tsv(fpkm, "fpkm", row_info)

    if not quiet:
        console.print(f"[green]Wrote counts:[/green] {output}")
        if fpkm:
            console.print(f"[green]Wrote FPKM:[/green] {fpkm}")


def _feature_info(splice_graph) -> dict:
    return {
        f.feature_id: {
            "type": f.type.value,
            "seqid": f.seqid,
            "start": f.start,
            "end": f.end,
            "strand": f.strand,
            "gene_id": f.gene_id,
        }
        for f in splice_graph.features
    }


# =============================================================================
# analyze command
# =============================================================================


@main.command()
@click.option(
    "-s",
    "--samples",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Sample table (TSV with sample_name and file_bam columns).",
)
@click.option(
    "-a",
    "--annotation",
    type=click.Path(exists=True, path_type=Path),
    help="GFF3 annotation; features are predicted from the samples if omitted.",
)
@click.option(
    "-r",
    "--region",
    multiple=True,
    help="Region to analyze (chr1:1000-2000 or chr1). May be repeated.",
)
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Output directory.",
)
@click.pass_context
def analyze(
    ctx: click.Context,
    samples: Path,
    annotation: Optional[Path],
    region: tuple[str, ...],
    output_dir: Path,
) -> None:
    """Run prediction, graph construction, event detection and counting.

    \b
    Output files:
    - graph.bed: splice graph features
    - feature_counts.tsv / feature_fpkm.tsv: feature abundances
    - variants.tsv: splice variants
    - variant_counts.tsv / variant_usage.tsv: variant abundances
    - config.yaml: the configuration used

    \b
    Examples:
        $ spliceforge analyze -s samples.tsv -o results/
        $ spliceforge -j 8 analyze -s samples.tsv -a genes.gff3 -o results/
    """
    from spliceforge.io.bed import to_interval_records, write_bed
    from spliceforge.io.gff import import_transcripts
    from spliceforge.pipeline import run_pipeline

    config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    sample_list = _load_samples(samples)
    regions = _parse_regions(region)

    try:
        features = None
        if annotation is not None:
            features = import_transcripts(annotation, regions)
        result = run_pipeline(sample_list, config, features, regions)
    except SpliceForgeError as e:
        _fail(str(e))

    _report_failures(result.sample_failures, "Sample")
    for gene_id, message in sorted(result.locus_errors.items()):
        console.print(f"[yellow]Warning:[/yellow] locus {gene_id} excluded: {message}")

    output_dir.mkdir(parents=True, exist_ok=True)
    graph = result.splice_graph
    row_info = _feature_info(graph)

    write_bed(to_interval_records(graph.features), output_dir / "graph.bed")
    result.feature_counts.matrix.write_tsv(output_dir / "feature_counts.tsv", "counts", row_info)
    result.feature_counts.matrix.write_tsv(output_dir / "feature_fpkm.tsv", "fpkm", row_info)
    result.events.write_tsv(output_dir / "variants.tsv")

    variant_info = {
        v.variant_id: {"event_id": v.event_id, "variant_name": v.variant_name, "variant_type": v.variant_type}
        for v in result.events.variants
    }
    result.variant_counts.matrix.write_tsv(output_dir / "variant_counts.tsv", "counts", variant_info)
    result.variant_counts.matrix.write_tsv(output_dir / "variant_usage.tsv", "usage", variant_info)
    config.save(output_dir / "config.yaml")

    if not quiet:
        stats = result.summary()
        console.print("")
        console.print("[bold]Analysis Summary:[/bold]")
        console.print(f"  Loci:              {stats['n_loci']:,}")
        console.print(f"  Features:          {stats['n_features']:,}")
        console.print(f"  Events:            {stats['n_events']:,}")
        console.print(f"  Variants:          {stats['n_variants']:,}")
        console.print(f"  Skipped events:    {stats['n_skipped_events']:,}")
        console.print(f"  Failed samples:    {stats['n_samples_failed']:,}")
        console.print("")
        console.print(f"[green]Wrote results to:[/green] {output_dir}")


if __name__ == "__main__":
    main()
