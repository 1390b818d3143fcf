#!/usr/bin/env python3
"""
Multi-panel figure assembly
Lays out sub-plots on a fixed grid so the saved PNGs match the published panels
"""

from pathlib import Path
from string import ascii_lowercase

import matplotlib.pyplot as plt
import scanpy as sc

from omics_eda.differential_abundance import draw_da_waterfall
from omics_eda.diversity import draw_alpha_boxplot, draw_pcoa

# 3 x 4 grid: two 2x2 t-SNE panels on top, one row of marker genes below
PBMC_FIGURE_LAYOUT = {
    "nrows": 3,
    "ncols": 4,
    "figsize": (16, 12),
    "cluster_panel": (slice(0, 2), slice(0, 2)),
    "celltype_panel": (slice(0, 2), slice(2, 4)),
    "marker_row": 2,
    "markers": ["CD3D", "NKG7", "MS4A1", "CD14"],
    "point_size": 2,
}

MICROBIOME_FIGURE_LAYOUT = {
    "nrows": 1,
    "ncols": 3,
    "figsize": (18, 5),
    "alpha_metric": "shannon",  # first computed metric when absent
    "top_n": 20,
}


def _panel_label(ax, index):
    ax.text(
        -0.08,
        1.04,
        ascii_lowercase[index],
        transform=ax.transAxes,
        fontsize=16,
        fontweight="bold",
        va="bottom",
    )


def _save(fig, save_path):
    if save_path:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_path}")
        plt.close(fig)
    else:
        plt.show()


def assemble_pbmc_figure(
    adata, cluster_key="leiden", celltype_key="celltype", save_path=None, layout=None
):
    """t-SNE figure: clusters, cell types and marker gene expression

    Args:
        adata: AnnData object with X_tsne, clusters and cell type labels
        cluster_key: obs column with clusters
        celltype_key: obs column with cell type labels
        save_path: PNG path (optional). If provided, the figure is saved without display.
        layout: Grid definition (default: PBMC_FIGURE_LAYOUT)

    Returns:
        matplotlib Figure
    """
    print("Assembling PBMC figure...")

    layout = PBMC_FIGURE_LAYOUT if layout is None else layout
    if "X_tsne" not in adata.obsm:
        raise KeyError("X_tsne not found; run t-SNE before assembling the figure")
    for key in (cluster_key, celltype_key):
        if key not in adata.obs:
            raise KeyError(f"Column '{key}' not found in adata.obs")

    fig = plt.figure(figsize=layout["figsize"])
    gs = fig.add_gridspec(layout["nrows"], layout["ncols"])
    size = layout["point_size"]

    ax = fig.add_subplot(gs[layout["cluster_panel"]])
    sc.pl.tsne(
        adata, color=cluster_key, legend_loc="on data", title="Clusters",
        size=size, ax=ax, show=False,
    )
    _panel_label(ax, 0)

    ax = fig.add_subplot(gs[layout["celltype_panel"]])
    sc.pl.tsne(adata, color=celltype_key, title="Cell types", size=size, ax=ax, show=False)
    _panel_label(ax, 1)

    var_names = adata.raw.var_names if adata.raw is not None else adata.var_names
    for i, gene in enumerate(layout["markers"][: layout["ncols"]]):
        ax = fig.add_subplot(gs[layout["marker_row"], i])
        if gene in var_names:
            sc.pl.tsne(
                adata, color=gene, title=gene, size=size, ax=ax, show=False,
                color_map="viridis",
            )
        else:
            ax.text(0.5, 0.5, f"{gene}\nnot detected", ha="center", va="center")
            ax.set_axis_off()
        if i == 0:
            _panel_label(ax, 2)

    fig.tight_layout()
    _save(fig, save_path)
    return fig


def assemble_microbiome_figure(
    alpha_df,
    coords,
    proportions,
    da_results,
    metadata,
    group_col,
    covariate=None,
    save_path=None,
    layout=None,
):
    """Alpha diversity, PCoA and differential abundance side by side

    Args:
        alpha_df: Samples x metrics alpha diversity
        coords: PCoA coordinates
        proportions: PCoA proportion explained
        da_results: Tidy DA results (None leaves the panel empty)
        metadata: Sample metadata
        group_col: Column defining the groups
        covariate: DA covariate shown (default: first in the results)
        save_path: PNG path (optional). If provided, the figure is saved without display.

    Returns:
        matplotlib Figure
    """
    print("Assembling microbiome figure...")

    layout = MICROBIOME_FIGURE_LAYOUT if layout is None else layout
    if group_col not in metadata.columns:
        raise KeyError(f"Group column '{group_col}' not found in sample metadata")

    fig, axes = plt.subplots(layout["nrows"], layout["ncols"], figsize=layout["figsize"])

    alpha_groups = metadata.loc[alpha_df.index, group_col].dropna().astype(str)
    alpha_metric = layout["alpha_metric"]
    if alpha_metric not in alpha_df.columns:
        alpha_metric = alpha_df.columns[0]
    draw_alpha_boxplot(axes[0], alpha_df, alpha_groups, alpha_metric)
    _panel_label(axes[0], 0)

    pcoa_groups = metadata.loc[coords.index, group_col].dropna().astype(str)
    draw_pcoa(axes[1], coords, proportions, pcoa_groups)
    _panel_label(axes[1], 1)

    if da_results is not None and not da_results.empty:
        if covariate is None:
            covariate = da_results["covariate"].iloc[0]
        draw_da_waterfall(axes[2], da_results, covariate, layout["top_n"])
    else:
        axes[2].text(0.5, 0.5, "No DA results", ha="center", va="center")
        axes[2].set_axis_off()
    _panel_label(axes[2], 2)

    fig.tight_layout()
    _save(fig, save_path)
    return fig
