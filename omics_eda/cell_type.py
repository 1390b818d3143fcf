import scanpy as sc
import matplotlib.pyplot as plt
import pandas as pd

from omics_eda.annotation import PBMC_MARKER_GENES


def plot_cell_type_summary(adata, key="celltype", save_dir=None):
    """Plot the number and fraction of cells per cell type

    Args:
        adata: AnnData object with cell type annotations
        key: obs column with the labels
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    counts = adata.obs[key].value_counts()
    fractions = counts / counts.sum() * 100

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.bar(counts.index.astype(str), counts.values, color="steelblue")
    for i, (n, pct) in enumerate(zip(counts.values, fractions.values)):
        ax.text(i, n, f"{pct:.1f}%", ha="center", va="bottom", fontsize=8)
    ax.set_title("Cells per cell type")
    ax.set_ylabel("Number of cells")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "celltype_distribution.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/celltype_distribution.png")
        plt.close(fig)
    else:
        plt.show()

    # Print summary table
    print("\nCell type summary:")
    print(counts.sort_index())


def compute_top_markers_per_cluster(
    adata,
    groupby="leiden",
    method="wilcoxon",
    n_top=30,
    pval_adj_cutoff=None,
    save_dir=None,
    plot=False,
):
    """Compute top marker genes per cluster using differential expression.

    Args:
        adata: AnnData object with clustering results.
        groupby: Column in adata.obs to group by (default: "leiden").
        method: DE method passed to scanpy (e.g., "wilcoxon", "t-test").
        n_top: Number of top genes to rank per group.
        pval_adj_cutoff: Optional adjusted p-value cutoff to filter results.
        save_dir: Optional Path to save a TSV summary and optional plots.
        plot: If True, create a rank_genes_groups plot (saved if save_dir provided).

    Returns:
        Pandas DataFrame with ranked markers across all groups.
    """
    if groupby not in adata.obs:
        raise KeyError(f"Groupby key '{groupby}' not found in adata.obs")

    print(f"Ranking marker genes per {groupby} cluster ({method})...")

    sc.tl.rank_genes_groups(
        adata,
        groupby=groupby,
        method=method,
        n_genes=int(n_top),
        use_raw=adata.raw is not None,
        pts=True,
    )

    markers_df = sc.get.rank_genes_groups_df(adata, None)
    if "pvals_adj" in markers_df.columns and pval_adj_cutoff is not None:
        markers_df = markers_df[markers_df["pvals_adj"] <= float(pval_adj_cutoff)]

    if save_dir is not None:
        out_tsv = save_dir / "top_markers_by_cluster.tsv"
        markers_df.to_csv(out_tsv, sep="\t", index=False)
        print(f"  Saved: {out_tsv}")

    if plot:
        sc.pl.rank_genes_groups(adata, n_genes=min(n_top, 20), sharey=False, show=False)
        if save_dir is not None:
            out_png = save_dir / "top_markers_ranked.png"
            plt.savefig(out_png, dpi=300, bbox_inches="tight")
            print(f"  Saved: {out_png}")
            plt.close()
        else:
            plt.show()

    return markers_df


def compare_top_markers_to_expected(markers_df, top_n=10, panels=None, save_dir=None):
    """Compare top DE genes per cluster with expected marker panels.

    Args:
        markers_df: DataFrame from ``compute_top_markers_per_cluster``.
        top_n: Number of top genes per cluster to evaluate.
        panels: Optional dict mapping panel name -> list of genes. Defaults to PBMC_MARKER_GENES.
        save_dir: Optional Path to write the overlap table.

    Returns:
        Tuple of (long DataFrame of overlaps, group x panel precision matrix)
    """
    if panels is None:
        panels = PBMC_MARKER_GENES

    sort_key = "scores" if "scores" in markers_df.columns else "logfoldchanges"
    if sort_key not in markers_df.columns:
        raise KeyError("markers_df must contain 'scores' or 'logfoldchanges' column")

    rows = []
    for group, sub in markers_df.groupby("group", observed=True):
        top_set = set(sub.sort_values(sort_key, ascending=False).head(int(top_n))["names"])
        for panel_name, panel_genes in panels.items():
            panel_genes = set(panel_genes)
            overlap = len(top_set & panel_genes)
            rows.append(
                {
                    "group": str(group),
                    "panel": panel_name,
                    "overlap": overlap,
                    "precision": overlap / max(1, len(top_set)),
                    "recall": overlap / max(1, len(panel_genes)),
                }
            )

    long_df = pd.DataFrame(rows)
    precision = long_df.pivot(index="group", columns="panel", values="precision")

    if save_dir is not None:
        out = save_dir / "expected_marker_overlap.tsv"
        long_df.to_csv(out, sep="\t", index=False)
        print(f"  Saved: {out}")

    return long_df, precision
