#!/usr/bin/env python3
"""
68k PBMC single-cell RNA-seq walkthrough

This script performs:
1. 10x data download and loading
2. Quality control and filtering
3. Normalization, PCA and t-SNE
4. Clustering and marker gene detection
5. Cell type labeling and the published t-SNE figure

uv run python pbmc68k_analysis.py --cluster-labels cluster_labels.tsv
"""

import warnings
import argparse
import matplotlib
import scanpy as sc
from pathlib import Path

from omics_eda.data_loader import (
    fetch_pbmc68k,
    fetch_reference_annotation,
    load_10x_data,
    add_reference_labels,
)
from omics_eda.qc_utils import calculate_qc_metrics, plot_qc_metrics, filter_cells_and_genes
from omics_eda.qc_violin_plots import create_true_violin_plots
from omics_eda.processing import (
    normalize_and_scale,
    run_pca_tsne_clustering,
    choose_leiden_resolution,
    plot_embeddings,
)
from omics_eda.cell_type import (
    compute_top_markers_per_cluster,
    compare_top_markers_to_expected,
    plot_cell_type_summary,
)
from omics_eda.annotation import (
    plot_marker_genes,
    assign_celltypes_by_cluster_scores,
    load_cluster_labels,
    label_clusters,
    create_cluster_aggregated_labels,
    compare_with_reference,
)
from omics_eda.figures import assemble_pbmc_figure
from omics_eda.qc_filters import CELL_FILTERS, CLUSTERING_PARAMS, get_filter_summary

# Configure scanpy
sc.settings.verbosity = 1
sc.settings.set_figure_params(dpi=80, facecolor="white")

# Suppress warnings
warnings.filterwarnings("ignore")


def main(
    input_path=None,
    data_dir="data",
    plots_dir_path="plots",
    cluster_method=None,
    auto_resolution=False,
    cluster_labels_path=None,
    reference_labels=True,
    output_path="pbmc68k_annotated.h5ad",
):
    """Main analysis pipeline

    Args:
        input_path: 10x matrix directory or .h5 file; downloaded if None.
        data_dir: Directory for downloaded inputs.
        plots_dir_path: Directory where plots and tables will be saved.
        cluster_method: "leiden" or "kmeans" (default from CLUSTERING_PARAMS).
        auto_resolution: Sweep Leiden resolutions and keep the best.
        cluster_labels_path: TSV of manual cluster -> cell type labels.
            Score-based proposals are used when not given.
        reference_labels: Attach and compare against the published labels.
        output_path: Where to write the annotated AnnData.
    """
    print("Starting PBMC 68k analysis pipeline...")

    plots_dir = Path(plots_dir_path)
    plots_dir.mkdir(parents=True, exist_ok=True)
    print(f"Plots will be saved to: {plots_dir.absolute()}")

    # Set matplotlib backend to non-interactive for save-only mode
    matplotlib.use("Agg")

    print("\n" + get_filter_summary() + "\n")

    cluster_method = cluster_method or CLUSTERING_PARAMS["method"]

    # Step 1: Load data
    if input_path is None:
        input_path = fetch_pbmc68k(data_dir)
    adata = load_10x_data(input_path)

    if reference_labels:
        adata = add_reference_labels(adata, fetch_reference_annotation(data_dir))

    # Step 2: QC metrics
    adata = calculate_qc_metrics(adata)
    plot_qc_metrics(adata, save_dir=plots_dir)
    create_true_violin_plots(adata, save_dir=plots_dir)

    # Step 3: Filter cells and genes
    adata = filter_cells_and_genes(
        adata,
        min_genes=CELL_FILTERS["min_genes"],
        max_genes=CELL_FILTERS["max_genes"],
        max_mt_pct=CELL_FILTERS["max_mt_pct"],
        min_counts=CELL_FILTERS["min_counts"],
        max_counts=CELL_FILTERS["max_counts"],
    )

    # Step 4: Normalize and scale
    adata = normalize_and_scale(adata)

    # Step 5: PCA, t-SNE, clustering
    adata = run_pca_tsne_clustering(adata, method=cluster_method, save_dir=plots_dir)
    cluster_key = cluster_method
    if cluster_method == "leiden" and auto_resolution:
        choose_leiden_resolution(adata, save_dir=plots_dir)

    # Step 6: Marker genes
    markers_df = compute_top_markers_per_cluster(adata, groupby=cluster_key, save_dir=plots_dir)
    compare_top_markers_to_expected(markers_df, save_dir=plots_dir)
    plot_marker_genes(adata, groupby=cluster_key, save_dir=plots_dir)

    # Step 7: Cell type labels
    proposal = assign_celltypes_by_cluster_scores(adata, groupby=cluster_key)
    mapping = load_cluster_labels(cluster_labels_path) if cluster_labels_path else proposal
    adata = label_clusters(adata, mapping, cluster_key=cluster_key)
    plot_cell_type_summary(adata, save_dir=plots_dir)

    if reference_labels:
        create_cluster_aggregated_labels(adata, celltype_col="bulk_labels", cluster_col=cluster_key)
        compare_with_reference(adata, key="celltype", reference_key="bulk_labels", save_dir=plots_dir)

    plot_embeddings(adata, color=[cluster_key, "celltype"], save_dir=plots_dir)

    # Step 8: Published figure layout
    assemble_pbmc_figure(
        adata,
        cluster_key=cluster_key,
        celltype_key="celltype",
        save_path=plots_dir / "pbmc68k_tsne_figure.png",
    )

    adata.write(output_path)
    print(f"Saved annotated data to {output_path}")

    print("Analysis complete!")
    return adata


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="68k PBMC QC, clustering and annotation")
    parser.add_argument("--input", default=None, help="10x matrix directory or .h5 file (default: download)")
    parser.add_argument("--data-dir", default="data", help="Download cache directory (default: 'data')")
    parser.add_argument("--plots-dir", default="plots", help="Directory to write plots to (default: 'plots')")
    parser.add_argument(
        "--cluster-method",
        choices=["leiden", "kmeans"],
        default=None,
        help="Clustering method (default from qc_filters.CLUSTERING_PARAMS)",
    )
    parser.add_argument("--auto-resolution", action="store_true", help="Sweep Leiden resolutions")
    parser.add_argument("--cluster-labels", default=None, help="TSV with 'cluster' and 'celltype' columns")
    parser.add_argument(
        "--no-reference-labels",
        action="store_true",
        help="Skip downloading and comparing the published labels",
    )
    parser.add_argument("--output", default="pbmc68k_annotated.h5ad", help="Annotated h5ad output path")
    args = parser.parse_args()

    adata = main(
        input_path=args.input,
        data_dir=args.data_dir,
        plots_dir_path=args.plots_dir,
        cluster_method=args.cluster_method,
        auto_resolution=args.auto_resolution,
        cluster_labels_path=args.cluster_labels,
        reference_labels=not args.no_reference_labels,
        output_path=args.output,
    )
