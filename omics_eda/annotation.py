#!/usr/bin/env python3
"""
Cell type annotation utilities for single-cell RNA-seq analysis
Handles marker panels, score-based label proposals and manual cluster labeling
"""

import numpy as np
import pandas as pd
import scanpy as sc
import matplotlib.pyplot as plt
from sklearn.metrics import adjusted_rand_score

# Canonical PBMC marker panels
PBMC_MARKER_GENES = {
    "CD4 T": ["IL7R", "CD3D", "CCR7", "LDHB"],
    "CD8 T": ["CD8A", "CD8B", "CD3D"],
    "NK": ["GNLY", "NKG7", "KLRD1"],
    "B": ["MS4A1", "CD79A", "CD79B"],
    "CD14 Mono": ["CD14", "LYZ", "S100A8", "S100A9"],
    "FCGR3A Mono": ["FCGR3A", "MS4A7"],
    "DC": ["FCER1A", "CST3"],
    "Megakaryocyte": ["PPBP", "PF4"],
}

UNKNOWN_LABEL = "Unknown"


def plot_marker_genes(adata, marker_genes=PBMC_MARKER_GENES, groupby="leiden", save_dir=None):
    """Plot marker genes across clusters

    Args:
        adata: AnnData object with clustering results
        marker_genes: Dict of cell type -> marker genes
        groupby: Cluster column
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    var_names = adata.raw.var_names if adata.raw is not None else adata.var_names

    # A gene may only appear once across panels
    seen = set()
    available = {}
    for ct, genes in marker_genes.items():
        genes = [g for g in genes if g in var_names and not (g in seen or seen.add(g))]
        if genes:
            available[ct] = genes

    if not available:
        print("No marker genes found in the dataset")
        return

    sc.pl.dotplot(
        adata,
        available,
        groupby=groupby,
        standard_scale="var",
        show=False,
    )

    if save_dir:
        plt.savefig(save_dir / "marker_genes_dotplot.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/marker_genes_dotplot.png")
        plt.close()
    else:
        plt.show()


def score_marker_panels(adata, marker_genes=PBMC_MARKER_GENES):
    """Add one module score per marker panel

    Returns:
        List of score column names added to adata.obs
    """
    use_raw = adata.raw is not None
    var_names = adata.raw.var_names if use_raw else adata.var_names

    score_cols = []
    for label, genes in marker_genes.items():
        genes = [g for g in genes if g in var_names]
        if not genes:
            continue
        score_name = f"score_{label}"
        sc.tl.score_genes(adata, gene_list=genes, score_name=score_name, use_raw=use_raw)
        score_cols.append(score_name)

    return score_cols


def assign_celltypes_by_cluster_scores(
    adata,
    marker_genes=PBMC_MARKER_GENES,
    groupby="leiden",
    margin=0.05,
    agg="median",
    key_added="celltype_proposed",
):
    """Propose a cell type per cluster from aggregated marker scores.

    Scores every marker panel per cell, aggregates scores per cluster and
    assigns the best-scoring panel when it beats the runner-up by ``margin``.
    Other clusters get "Unknown". The proposal is meant to be reviewed before
    it is passed to ``label_clusters``.

    Args:
        adata: AnnData object with clusters in obs[groupby]
        marker_genes: Dict of cell type -> marker genes
        groupby: Cluster column
        margin: Confidence margin between top and second-best scores
        agg: Aggregation method ('median' or 'mean')
        key_added: obs column for the proposed labels

    Returns:
        Dict mapping cluster id -> proposed label
    """
    if groupby not in adata.obs:
        raise KeyError(f"Cluster key '{groupby}' not found in adata.obs")

    score_cols = score_marker_panels(adata, marker_genes)
    if not score_cols:
        raise ValueError("None of the marker genes are present in the dataset")

    grouped = adata.obs.groupby(groupby, observed=True)[score_cols]
    grouped = grouped.median() if agg == "median" else grouped.mean()

    values = grouped.values
    top_idx = np.argmax(values, axis=1)
    best = values[np.arange(values.shape[0]), top_idx]
    if values.shape[1] > 1:
        second_best = np.partition(values, -2, axis=1)[:, -2]
    else:
        second_best = np.full_like(best, -np.inf)
    labels = np.array([c.replace("score_", "") for c in score_cols])

    proposal = {}
    for cluster_id, idx, conf in zip(grouped.index.astype(str), top_idx, best - second_best):
        proposal[cluster_id] = labels[idx] if conf >= margin else UNKNOWN_LABEL

    adata.obs[key_added] = adata.obs[groupby].astype(str).map(proposal).astype("category")

    n_confident = sum(v != UNKNOWN_LABEL for v in proposal.values())
    print(f"✓ Proposed labels for {n_confident} / {len(proposal)} clusters")
    for cluster_id, label in proposal.items():
        print(f"  {cluster_id}: {label}")

    return proposal


def load_cluster_labels(path):
    """Read a manual cluster -> cell type table

    Args:
        path: TSV with 'cluster' and 'celltype' columns

    Returns:
        Dict mapping cluster id (str) -> label
    """
    table = pd.read_csv(path, sep="\t", dtype=str)
    for col in ("cluster", "celltype"):
        if col not in table.columns:
            raise KeyError(f"Column '{col}' not found in {path}")
    return dict(zip(table["cluster"].str.strip(), table["celltype"].str.strip()))


def label_clusters(adata, mapping, cluster_key="leiden", key_added="celltype"):
    """Apply manual cluster labels

    Clusters missing from the mapping are labeled "Unknown".

    Args:
        adata: AnnData object
        mapping: Dict cluster id -> cell type label
        cluster_key: Cluster column
        key_added: obs column to write

    Returns:
        AnnData object with labels in obs[key_added]
    """
    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

    mapping = {str(k): v for k, v in mapping.items()}
    clusters = adata.obs[cluster_key].astype(str)

    unmapped = sorted(set(clusters) - set(mapping))
    if unmapped:
        print(f"  Clusters without a label: {', '.join(unmapped)}")

    labels = clusters.map(mapping).fillna(UNKNOWN_LABEL)
    order = list(dict.fromkeys(v for v in mapping.values()))
    if UNKNOWN_LABEL in set(labels) and UNKNOWN_LABEL not in order:
        order.append(UNKNOWN_LABEL)
    adata.obs[key_added] = pd.Categorical(labels, categories=order)

    print(f"Labeled {adata.n_obs:,} cells into {labels.nunique()} cell types")
    return adata


def create_cluster_aggregated_labels(
    adata, celltype_col="celltype", cluster_col="leiden", purity_threshold=0.60
):
    """Cluster purity of a per-cell labeling.

    For each cluster:
    - If the dominant label covers more than purity_threshold: keeps that label
    - Otherwise: labels the cluster "Mixed" and records its top 2-3 labels

    Args:
        adata: AnnData object with cell type annotations
        celltype_col: Column name containing cell type labels
        cluster_col: Column name containing cluster labels
        purity_threshold: Threshold for cluster purity (default: 0.60 = 60%)

    Side effects:
        - Adds 'celltype_cluster': cluster-level label ("celltype" or "Mixed")
        - Adds 'celltype_cluster_top_types': top 2-3 cell types for each cluster
        - Adds 'cluster_purity': proportion of dominant cell type in each cluster

    Returns:
        List of mixed cluster ids
    """
    for col in (celltype_col, cluster_col):
        if col not in adata.obs:
            raise KeyError(f"Column '{col}' not found in adata.obs")

    # Cells without a label do not count towards purity
    obs = adata.obs[[cluster_col, celltype_col]].dropna()
    composition = pd.crosstab(
        obs[cluster_col].astype(str),
        obs[celltype_col].astype(str),
        normalize="index",
    )
    dominant = composition.idxmax(axis=1)
    dominant_prop = composition.max(axis=1)

    top_types = {}
    for cluster_id in composition.index:
        sorted_types = composition.loc[cluster_id].sort_values(ascending=False)
        top = sorted_types[sorted_types > 0.05].head(3)
        top_types[cluster_id] = ", ".join(f"{ct} ({p*100:.1f}%)" for ct, p in top.items())

    cluster_labels = {
        cid: dominant[cid] if dominant_prop[cid] > purity_threshold else "Mixed"
        for cid in composition.index
    }
    mixed = [cid for cid, label in cluster_labels.items() if label == "Mixed"]

    clusters = adata.obs[cluster_col].astype(str)
    adata.obs["celltype_cluster"] = clusters.map(cluster_labels)
    adata.obs["celltype_cluster_top_types"] = clusters.map(top_types)
    adata.obs["cluster_purity"] = clusters.map(dominant_prop).astype(float)

    print(f"\n{'='*60}")
    print("CLUSTER PURITY ANALYSIS")
    print(f"{'='*60}")
    print(f"Purity threshold: {purity_threshold*100:.0f}%")
    print(f"Pure clusters: {len(cluster_labels) - len(mixed)}")
    print(f"Mixed clusters: {len(mixed)}")
    for cid in mixed:
        print(f"  Cluster {cid}: {top_types[cid]}")

    return mixed


def compare_with_reference(adata, key="celltype", reference_key="bulk_labels", save_dir=None):
    """Compare labels against published reference labels

    Cells without a reference label are ignored.

    Returns:
        Tuple of (row-normalized crosstab, adjusted Rand index)
    """
    for col in (key, reference_key):
        if col not in adata.obs:
            raise KeyError(f"Column '{col}' not found in adata.obs")

    obs = adata.obs[[key, reference_key]].dropna()
    table = pd.crosstab(obs[key].astype(str), obs[reference_key].astype(str), normalize="index")
    ari = adjusted_rand_score(obs[reference_key].astype(str), obs[key].astype(str))

    print(f"Agreement with {reference_key}: ARI = {ari:.3f} ({obs.shape[0]:,} cells)")

    if save_dir:
        out = save_dir / f"{key}_vs_{reference_key}.tsv"
        table.to_csv(out, sep="\t")
        print(f"  Saved: {out}")

    return table, ari
