#!/usr/bin/env python3
"""
Curated metagenomics data utilities
Handles sample metadata queries, MetaPhlAn relative abundance tables,
count reconstruction and tab-separated exports
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pooch

from omics_eda.microbiome_params import RANK_PREFIXES, TAXONOMIC_RANKS


def fetch_data_file(source, data_dir="data"):
    """Return a local path for a data file, downloading it if it is a URL

    Args:
        source: Local path or http(s)/ftp URL
        data_dir: Directory where downloads are cached

    Returns:
        Path to the local file
    """
    source = str(source)
    if source.startswith(("http://", "https://", "ftp://")):
        print(f"Fetching {source}")
        local = pooch.retrieve(
            url=source,
            known_hash=None,
            path=Path(data_dir),
            progressbar=False,
        )
        return Path(local)

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    return path


def _separator_for(path):
    return "," if Path(path).suffix.lower() == ".csv" else "\t"


def load_sample_metadata(path, sample_id_col="sample_id"):
    """Load a curated sample metadata table

    Args:
        path: TSV or CSV file with one row per sample
        sample_id_col: Column holding the sample identifiers

    Returns:
        DataFrame indexed by sample id
    """
    print("Loading sample metadata...")

    metadata = pd.read_csv(path, sep=_separator_for(path), low_memory=False)
    if sample_id_col not in metadata.columns:
        raise KeyError(f"Sample id column '{sample_id_col}' not found in {path}")

    metadata = metadata.set_index(sample_id_col)
    metadata.index = metadata.index.astype(str)
    metadata.index.name = "sample_id"

    print(f"Loaded metadata for {metadata.shape[0]} samples, {metadata.shape[1]} columns")
    return metadata


def _as_list(value):
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def query_samples(
    metadata, body_site=None, study_name=None, disease=None, study_condition=None
):
    """Select samples matching every given criterion

    Each criterion accepts a single value or a list of values. ``disease``
    holds ``;``-separated labels in curated tables, so a sample matches when
    any of its labels is requested.

    Args:
        metadata: Sample metadata DataFrame
        body_site: Body site(s) to keep (e.g. "skin")
        study_name: Study name(s) to keep
        disease: Disease label(s) to keep
        study_condition: Study condition(s) to keep

    Returns:
        Filtered copy of the metadata
    """
    mask = pd.Series(True, index=metadata.index)

    for col, value in [
        ("body_site", body_site),
        ("study_name", study_name),
        ("study_condition", study_condition),
    ]:
        if value is None:
            continue
        if col not in metadata.columns:
            raise KeyError(f"Column '{col}' not found in sample metadata")
        mask &= metadata[col].isin(_as_list(value))

    if disease is not None:
        if "disease" not in metadata.columns:
            raise KeyError("Column 'disease' not found in sample metadata")
        wanted = set(_as_list(disease))
        labels = metadata["disease"].fillna("").astype(str).str.split(";")
        mask &= labels.apply(lambda tokens: bool(wanted & set(tokens)))

    selected = metadata.loc[mask].copy()
    print(f"Selected {selected.shape[0]} of {metadata.shape[0]} samples")
    return selected


def split_lineage(lineage):
    """Split a MetaPhlAn lineage string into rank names

    Args:
        lineage: e.g. "k__Bacteria|p__Actinobacteria|...|s__Cutibacterium_acnes"

    Returns:
        Dict mapping every taxonomic rank to its name (NaN when absent)
    """
    ranks = dict.fromkeys(TAXONOMIC_RANKS, np.nan)
    for part in str(lineage).split("|"):
        prefix, sep, name = part.partition("__")
        if sep and prefix in RANK_PREFIXES:
            ranks[RANK_PREFIXES[prefix]] = name
    return ranks


def _count_preamble_lines(path):
    """Count leading comment lines that are not the header row"""
    n = 0
    with open(path) as fh:
        for line in fh:
            if line.startswith("#") and "\t" not in line:
                n += 1
            else:
                break
    return n


def load_relative_abundance(path):
    """Load a species-level relative abundance table

    Accepts a merged MetaPhlAn table or a curated export whose row names are
    full lineages. Only species-level rows are kept.

    Args:
        path: Tab-separated table, taxa x samples, values in percent

    Returns:
        Tuple of (relative_abundance_df, taxonomy_df), both indexed by species
    """
    print("Loading relative abundance table...")

    table = pd.read_csv(path, sep="\t", index_col=0, skiprows=_count_preamble_lines(path))
    table = table.select_dtypes(include="number")
    table.columns = table.columns.astype(str)

    lineages = table.index.astype(str)
    is_lineage = lineages.str.contains("__")

    if is_lineage.any():
        last = lineages.str.split("|").str[-1]
        keep = np.asarray(last.str.startswith("s__"))
        table = table.loc[keep]
        taxonomy = pd.DataFrame(
            [split_lineage(x) for x in table.index.astype(str)],
            columns=TAXONOMIC_RANKS,
        )
        taxonomy.index = taxonomy["species"].values
        table.index = taxonomy.index
    else:
        taxonomy = pd.DataFrame(np.nan, index=table.index, columns=TAXONOMIC_RANKS)
        taxonomy["species"] = table.index

    duplicated = table.index.duplicated()
    table = table.loc[~duplicated]
    taxonomy = taxonomy.loc[~duplicated]
    table.index.name = "taxon"
    taxonomy.index.name = "taxon"

    print(f"Loaded {table.shape[0]} species across {table.shape[1]} samples")
    return table, taxonomy


def align_samples(metadata, abundance):
    """Restrict metadata and abundance to their shared samples

    Args:
        metadata: Sample metadata (samples as index)
        abundance: Abundance table (samples as columns)

    Returns:
        Tuple of (metadata, abundance) in metadata order
    """
    shared = [s for s in metadata.index if s in set(abundance.columns)]
    n_meta_dropped = metadata.shape[0] - len(shared)
    n_abund_dropped = abundance.shape[1] - len(shared)

    if n_meta_dropped:
        print(f"  {n_meta_dropped} samples have metadata but no abundance profile")
    if n_abund_dropped:
        print(f"  {n_abund_dropped} abundance profiles are outside the selected cohort")

    return metadata.loc[shared].copy(), abundance[shared].copy()


def relative_to_counts(relab, metadata, reads_col="number_reads"):
    """Reconstruct read counts from percent relative abundance

    counts = round(relative abundance / 100 * sequencing depth)

    Args:
        relab: Taxa x samples relative abundance in percent
        metadata: Sample metadata containing the sequencing depth
        reads_col: Column with the number of reads per sample

    Returns:
        Integer count DataFrame with the same shape as ``relab``
    """
    if reads_col not in metadata.columns:
        raise KeyError(f"Column '{reads_col}' not found in sample metadata")

    reads = metadata.loc[relab.columns, reads_col]
    if reads.isna().any():
        missing = reads.index[reads.isna()].tolist()
        raise ValueError(f"Missing {reads_col} for samples: {missing}")

    counts = relab.mul(reads.astype(float) / 100, axis=1).round().astype(int)
    return counts


def agglomerate_by_rank(table, taxonomy, rank):
    """Sum a taxa x samples table up to a taxonomic rank

    Args:
        table: Taxa x samples abundance table
        taxonomy: Taxonomy table indexed like ``table``
        rank: One of the taxonomy columns (e.g. "genus")

    Returns:
        Table indexed by the rank names; unassigned taxa pooled as "Unclassified"
    """
    if rank not in taxonomy.columns:
        raise KeyError(f"Rank '{rank}' not found in taxonomy table")

    labels = taxonomy.loc[table.index, rank].fillna("Unclassified")
    agglomerated = table.groupby(labels.values).sum()
    agglomerated.index.name = rank
    return agglomerated


def write_tsv(df, path):
    """Write a DataFrame as a tab-separated file with its index"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t")
    return path


def read_tsv(path):
    """Read a tab-separated file written by ``write_tsv``"""
    return pd.read_csv(path, sep="\t", index_col=0)


def export_tables(out_dir, metadata, relab, counts, taxonomy):
    """Write the cohort tables used by the notebook

    Returns:
        Dict of table name -> written path
    """
    out_dir = Path(out_dir)
    paths = {
        "metadata": write_tsv(metadata, out_dir / "sample_metadata.tsv"),
        "relative_abundance": write_tsv(relab, out_dir / "relative_abundance.tsv"),
        "counts": write_tsv(counts, out_dir / "counts.tsv"),
        "taxonomy": write_tsv(taxonomy, out_dir / "taxonomy.tsv"),
    }
    for path in paths.values():
        print(f"  Saved: {path}")
    return paths


def check_cohort_size(metadata, expected):
    """Raise if the selected cohort does not have the expected number of samples"""
    if metadata.shape[0] != expected:
        raise ValueError(
            f"Expected {expected} samples in the cohort, found {metadata.shape[0]}"
        )
    return True


def check_taxonomy_table(taxonomy, ranks=TAXONOMIC_RANKS):
    """Raise if the taxonomy table does not have one column per rank"""
    if taxonomy.shape[1] != len(ranks):
        raise ValueError(
            f"Taxonomy table has {taxonomy.shape[1]} columns, expected {len(ranks)}"
        )
    if list(taxonomy.columns) != list(ranks):
        raise ValueError(f"Taxonomy columns {list(taxonomy.columns)} != {list(ranks)}")
    return True


def check_roundtrip(df, path):
    """Raise if a written table does not parse back to the same values"""
    reread = read_tsv(path)
    reread.index = reread.index.astype(str)
    expected = df.copy()
    expected.index = expected.index.astype(str)
    try:
        pd.testing.assert_frame_equal(
            expected, reread, check_dtype=False, check_names=False
        )
    except AssertionError as e:
        raise ValueError(f"Round-trip check failed for {path}: {e}") from e
    return True
