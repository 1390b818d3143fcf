#!/usr/bin/env python3
"""
Data loading utilities for the PBMC 68k single-cell analysis
Handles 10x Genomics download, matrix loading and published labels
"""

from pathlib import Path

import pandas as pd
import pooch
import scanpy as sc

PBMC68K_URL = (
    "https://cf.10xgenomics.com/samples/cell-exp/1.1.0/fresh_68k_pbmc_donor_a/"
    "fresh_68k_pbmc_donor_a_filtered_gene_bc_matrices.tar.gz"
)

# Per-barcode labels released with Zheng et al. (2017)
PBMC68K_ANNOTATION_URL = (
    "https://raw.githubusercontent.com/10XGenomics/single-cell-3prime-paper/"
    "master/pbmc68k_analysis/68k_pbmc_barcodes_annotation.tsv"
)


def _find_matrix_dir(files):
    """Return the directory holding matrix.mtx among extracted files"""
    for f in sorted(files):
        f = Path(f)
        if f.name in ("matrix.mtx", "matrix.mtx.gz"):
            return f.parent
    raise FileNotFoundError("No matrix.mtx found in the extracted archive")


def fetch_pbmc68k(data_dir="data"):
    """Download and extract the 10x Fresh 68k PBMC (Donor A) matrices

    Args:
        data_dir: Directory where the archive is cached

    Returns:
        Path to the directory with matrix.mtx, genes.tsv and barcodes.tsv
    """
    print("Fetching 68k PBMC matrices...")

    files = pooch.retrieve(
        url=PBMC68K_URL,
        known_hash=None,
        path=Path(data_dir),
        processor=pooch.Untar(),
        progressbar=False,
    )
    matrix_dir = _find_matrix_dir(files)
    print(f"  Matrices in {matrix_dir}")
    return matrix_dir


def fetch_reference_annotation(data_dir="data"):
    """Download the published per-barcode cell type labels"""
    return Path(
        pooch.retrieve(
            url=PBMC68K_ANNOTATION_URL,
            known_hash=None,
            path=Path(data_dir),
            progressbar=False,
        )
    )


def load_10x_data(path):
    """Load a 10x count matrix

    Args:
        path: Directory with matrix.mtx/genes.tsv/barcodes.tsv or a 10x .h5 file

    Returns:
        AnnData object (cells x genes) with unique gene symbols
    """
    path = Path(path)
    print(f"Loading {path}")

    if path.suffix == ".h5":
        adata = sc.read_10x_h5(path)
    elif path.is_dir():
        adata = sc.read_10x_mtx(path, var_names="gene_symbols", cache=False)
    else:
        raise FileNotFoundError(f"Expected a 10x matrix directory or .h5 file: {path}")

    adata.var_names_make_unique()
    print(f"Loaded {adata.n_obs} cells and {adata.n_vars} genes")
    return adata


def add_reference_labels(adata, annotation_path, key_added="bulk_labels"):
    """Attach published cell type labels by barcode

    Args:
        adata: AnnData object
        annotation_path: TSV with 'barcodes' and 'celltype' columns
        key_added: obs column to write

    Returns:
        AnnData object with reference labels (NaN for unmatched barcodes)
    """
    print("Adding reference labels...")

    annotation = pd.read_csv(annotation_path, sep="\t")
    for col in ("barcodes", "celltype"):
        if col not in annotation.columns:
            raise KeyError(f"Column '{col}' not found in {annotation_path}")

    labels = annotation.set_index("barcodes")["celltype"]
    adata.obs[key_added] = adata.obs_names.map(labels)

    n_matched = adata.obs[key_added].notna().sum()
    print(f"  Matched {n_matched:,} / {adata.n_obs:,} barcodes")
    return adata
