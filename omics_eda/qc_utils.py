#!/usr/bin/env python3
"""
Quality control utilities for single-cell RNA-seq analysis
Handles QC metrics calculation, QC plots and filtering
"""

import scanpy as sc
import matplotlib.pyplot as plt

from omics_eda.qc_filters import CELL_FILTERS, GENE_FILTERS, GENE_PATTERNS


def calculate_qc_metrics(adata):
    """Calculate QC metrics

    Args:
        adata: AnnData object with raw UMI counts

    Returns:
        AnnData object with QC metrics added
    """
    print("Calculating QC metrics...")

    # Mitochondrial genes
    adata.var["mt"] = adata.var_names.str.startswith(GENE_PATTERNS["mt_pattern"])
    # Ribosomal genes
    adata.var["ribo"] = adata.var_names.str.match(GENE_PATTERNS["ribo_pattern"])

    sc.pp.calculate_qc_metrics(
        adata,
        qc_vars=["mt", "ribo"],
        percent_top=None,
        log1p=False,
        inplace=True,
        var_type="genes",
    )

    adata.obs["percent_mt"] = adata.obs["pct_counts_mt"].fillna(0)
    adata.obs["percent_ribo"] = adata.obs["pct_counts_ribo"].fillna(0)

    print(f"  {int(adata.var['mt'].sum())} mitochondrial, {int(adata.var['ribo'].sum())} ribosomal genes")
    return adata


def plot_qc_metrics(adata, save_dir=None):
    """Plot QC metrics

    Args:
        adata: AnnData object with QC metrics
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting QC metrics...")

    fig, axes = plt.subplots(1, 3, figsize=(15, 4))

    sc.pl.scatter(adata, x="total_counts", y="percent_mt", ax=axes[0], show=False)
    sc.pl.scatter(adata, x="total_counts", y="n_genes_by_counts", ax=axes[1], show=False)
    axes[2].hist(adata.obs["n_genes_by_counts"], bins=100, color="gray")
    axes[2].axvline(CELL_FILTERS["min_genes"], color="red", linestyle="--")
    axes[2].axvline(CELL_FILTERS["max_genes"], color="red", linestyle="--")
    axes[2].set_xlabel("Genes per cell")
    axes[2].set_ylabel("Cells")

    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "qc_scatter_plots.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/qc_scatter_plots.png")
        plt.close(fig)
    else:
        plt.show()


def filter_cells_and_genes(
    adata,
    min_genes=200,
    max_genes=2500,
    max_mt_pct=10,
    min_counts=None,
    max_counts=None,
    min_cells=None,
):
    """Apply QC filtering

    Args:
        adata: AnnData object with QC metrics
        min_genes: Minimum genes per cell
        max_genes: Maximum genes per cell
        max_mt_pct: Maximum mitochondrial percentage
        min_counts: Minimum total counts per cell (optional)
        max_counts: Maximum total counts per cell (optional)
        min_cells: Minimum cells expressing a gene (default from GENE_FILTERS)

    Returns:
        Filtered AnnData object
    """
    print("Applying QC filters...")

    if min_cells is None:
        min_cells = GENE_FILTERS["min_cells"]

    print(f"Starting with {adata.n_obs} cells and {adata.n_vars} genes")

    # Filter cells with too few genes
    sc.pp.filter_cells(adata, min_genes=min_genes)

    # Filter genes expressed in at least min_cells
    sc.pp.filter_genes(adata, min_cells=min_cells)

    # Filter cells based on QC metrics
    keep = (adata.obs.n_genes_by_counts < max_genes) & (adata.obs.percent_mt < max_mt_pct)

    # Optional count filters
    if min_counts is not None:
        keep &= adata.obs.total_counts >= min_counts
    if max_counts is not None:
        keep &= adata.obs.total_counts <= max_counts

    adata = adata[keep.values, :].copy()

    print(f"After filtering: {adata.n_obs} cells and {adata.n_vars} genes")

    return adata
