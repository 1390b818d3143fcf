#!/usr/bin/env python3
"""
Processing utilities for single-cell RNA-seq analysis
Handles normalization, scaling, PCA, t-SNE and clustering
"""

import os

import numpy as np
import pandas as pd
import scanpy as sc
import matplotlib.pyplot as plt
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score

from omics_eda.qc_filters import CLUSTERING_PARAMS, PROCESSING_PARAMS


def normalize_and_scale(
    adata,
    target_sum=None,
    flavor=None,
    n_top_genes=None,
    max_value=None,
):
    """Normalize and scale data

    Args:
        adata: AnnData object with raw counts
        target_sum: Counts per cell after normalization
        flavor: Highly variable gene flavor
        n_top_genes: Number of highly variable genes to keep
        max_value: Clip scaled values at this magnitude

    Returns:
        Processed AnnData object restricted to highly variable genes
    """
    target_sum = PROCESSING_PARAMS["target_sum"] if target_sum is None else target_sum
    flavor = PROCESSING_PARAMS["hvg_flavor"] if flavor is None else flavor
    n_top_genes = PROCESSING_PARAMS["n_top_genes"] if n_top_genes is None else n_top_genes
    max_value = PROCESSING_PARAMS["max_value"] if max_value is None else max_value

    print("Normalizing and scaling data...")

    # Raw counts travel with the saved h5ad
    adata.layers["counts"] = adata.X.copy()

    # Normalize to target_sum UMIs per cell
    sc.pp.normalize_total(adata, target_sum=target_sum)

    # Log transform
    sc.pp.log1p(adata)

    # Find highly variable genes
    sc.pp.highly_variable_genes(adata, flavor=flavor, n_top_genes=int(n_top_genes))

    # Save full log-normalized data, then keep only HVGs
    adata.raw = adata
    adata = adata[:, adata.var.highly_variable].copy()

    # Scale data
    sc.pp.scale(adata, max_value=max_value)

    print(f"  Kept {adata.n_vars} highly variable genes")
    return adata


def cluster_kmeans(adata, n_clusters=10, n_pcs=50, random_state=0, key_added="kmeans"):
    """k-means clustering on the PCA embedding

    Args:
        adata: AnnData object with X_pca
        n_clusters: Number of clusters
        n_pcs: Number of leading PCs used

    Returns:
        AnnData object with cluster labels in obs[key_added]
    """
    X = adata.obsm["X_pca"][:, :n_pcs]
    km = KMeans(n_clusters=int(n_clusters), n_init=10, random_state=random_state)
    labels = km.fit_predict(X)

    # Number clusters by size, largest first
    order = pd.Series(labels).value_counts().index
    relabel = {old: str(new) for new, old in enumerate(order)}
    adata.obs[key_added] = pd.Categorical(
        [relabel[x] for x in labels],
        categories=[str(i) for i in range(len(order))],
    )
    return adata


def run_pca_tsne_clustering(
    adata,
    n_comps=None,
    n_pcs=None,
    n_neighbors=None,
    perplexity=None,
    method=None,
    resolution=None,
    n_clusters=None,
    random_state=None,
    save_dir=None,
):
    """Run PCA, t-SNE and clustering

    Args:
        adata: Scaled AnnData object
        n_comps: Number of principal components to compute
        n_pcs: Number of PCs used for neighbors, t-SNE and k-means
        n_neighbors: k for the kNN graph
        perplexity: t-SNE perplexity
        method: "leiden" or "kmeans"
        resolution: Leiden resolution
        n_clusters: k-means k
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.

    Returns:
        AnnData object with embeddings and clusters in obs[method]
    """
    params = dict(CLUSTERING_PARAMS)
    for key, value in [
        ("n_comps", n_comps),
        ("n_pcs", n_pcs),
        ("n_neighbors", n_neighbors),
        ("perplexity", perplexity),
        ("method", method),
        ("resolution", resolution),
        ("n_clusters", n_clusters),
        ("random_state", random_state),
    ]:
        if value is not None:
            params[key] = value

    n_comps = min(int(params["n_comps"]), adata.n_obs - 1, adata.n_vars - 1)
    n_pcs = min(int(params["n_pcs"]), n_comps)

    print("Running PCA...")
    sc.tl.pca(adata, svd_solver="arpack", n_comps=n_comps)

    # Plot elbow plot
    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        fig, ax = plt.subplots(figsize=(6, 4))
        ratios = adata.uns["pca"]["variance_ratio"]
        ax.plot(np.arange(1, len(ratios) + 1), ratios, "o-", markersize=3)
        ax.set_xlabel("PC")
        ax.set_ylabel("Variance ratio")
        ax.set_yscale("log")
        fig.tight_layout()
        fig.savefig(save_dir / "pca_elbow_plot.png", dpi=300, bbox_inches="tight")
        plt.close(fig)
        print(f"  Saved: {save_dir}/pca_elbow_plot.png")

    print("Computing neighborhood graph...")
    sc.pp.neighbors(adata, n_neighbors=int(params["n_neighbors"]), n_pcs=n_pcs)

    print("Running t-SNE...")
    sc.tl.tsne(
        adata,
        n_pcs=n_pcs,
        perplexity=params["perplexity"],
        random_state=params["random_state"],
    )

    print("Clustering...")
    if params["method"] == "leiden":
        sc.tl.leiden(
            adata,
            resolution=float(params["resolution"]),
            flavor="igraph",
            n_iterations=2,
            directed=False,
            random_state=params["random_state"],
        )
    elif params["method"] == "kmeans":
        cluster_kmeans(
            adata,
            n_clusters=params["n_clusters"],
            n_pcs=n_pcs,
            random_state=params["random_state"],
        )
    else:
        raise ValueError(f"Unknown clustering method '{params['method']}'")

    n_found = adata.obs[params["method"]].nunique()
    print(f"  Found {n_found} clusters ({params['method']})")
    return adata


def plot_embeddings(adata, color=None, save_dir=None):
    """Plot t-SNE embeddings

    Args:
        adata: AnnData object with t-SNE coordinates
        color: obs columns or genes to color by (one panel each)
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting embeddings...")

    if color is None:
        color = [CLUSTERING_PARAMS["method"]]

    ncols = min(2, len(color))
    nrows = int(np.ceil(len(color) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(6 * ncols, 5 * nrows), squeeze=False)

    for ax, key in zip(axes.flat, color):
        sc.pl.tsne(
            adata,
            color=key,
            legend_loc="on data" if key in adata.obs and adata.obs[key].dtype.name == "category" else "right margin",
            title=key,
            ax=ax,
            show=False,
        )
    for ax in axes.flat[len(color):]:
        ax.set_visible(False)

    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "tsne_embeddings.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/tsne_embeddings.png")
        plt.close(fig)
    else:
        plt.show()


def choose_leiden_resolution(
    adata,
    resolution_grid=None,
    min_cluster_size=20,
    silhouette_sample_size=5000,
    random_state=0,
    save_dir=None,
):
    """Sweep Leiden resolutions and pick a robust choice.

    Strategy:
    - Compute Leiden for a grid of resolutions on the existing kNN graph
    - Evaluate silhouette on PCA space and fraction of cells in small clusters
    - Select the resolution with highest silhouette; among ties within 0.02 of max,
      prefer lower small-cluster fraction, then fewer clusters, then lower resolution

    Side effects:
    - Adds columns `leiden_{res}` to `adata.obs` for each tested resolution
    - Sets `adata.obs["leiden"]` to the labels of the chosen resolution
    - Writes sweep metrics CSV and a diagnostic plot if `save_dir` set

    Returns:
    - chosen resolution (float)
    """
    if resolution_grid is None:
        resolution_grid = np.round(np.arange(0.2, 1.45, 0.1), 2)

    if "X_pca" not in adata.obsm:
        raise KeyError("X_pca not found; run PCA before the resolution sweep")
    if "neighbors" not in adata.uns:
        raise KeyError("Neighbor graph not found; run sc.pp.neighbors first")

    X = adata.obsm["X_pca"]
    sample_size = min(int(silhouette_sample_size), adata.n_obs)

    metrics = []
    for res in resolution_grid:
        key = f"leiden_{res:.2f}"
        sc.tl.leiden(
            adata,
            resolution=float(res),
            key_added=key,
            flavor="igraph",
            n_iterations=2,
            directed=False,
            random_state=random_state,
        )
        labels = adata.obs[key].astype(str)

        n_clusters = labels.nunique()
        small_frac = 0.0
        sil = np.nan
        if n_clusters > 1:
            counts = labels.value_counts()
            small_frac = float(
                counts[counts < max(2, int(min_cluster_size))].sum() / len(labels)
            )
            sil = float(
                silhouette_score(X, labels, sample_size=sample_size, random_state=random_state)
            )

        metrics.append(
            {
                "resolution": float(res),
                "n_clusters": int(n_clusters),
                "silhouette": sil,
                "small_cluster_fraction": small_frac,
            }
        )

    metrics_df = pd.DataFrame(metrics)

    # 1) max silhouette; 2) within 0.02 of max, minimize small frac,
    # 3) then n_clusters; 4) then lowest resolution
    max_sil = np.nanmax(metrics_df["silhouette"].values) if metrics_df["silhouette"].notna().any() else np.nan
    if np.isfinite(max_sil):
        near = metrics_df[np.abs(metrics_df["silhouette"] - max_sil) <= 0.02]
        chosen = near.sort_values(
            by=["small_cluster_fraction", "n_clusters", "resolution"]
        ).iloc[0]
    else:
        candidates = metrics_df[metrics_df["n_clusters"] > 1]
        pool = candidates if not candidates.empty else metrics_df
        chosen = pool.sort_values("resolution").iloc[0]

    chosen_res = float(chosen["resolution"])

    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        metrics_path = save_dir / "leiden_resolution_sweep.csv"
        metrics_df.to_csv(metrics_path, index=False)

        fig, ax1 = plt.subplots(figsize=(7, 4))
        ax2 = ax1.twinx()
        ax1.plot(metrics_df["resolution"], metrics_df["silhouette"], "-o", color="#1f77b4")
        ax2.plot(metrics_df["resolution"], metrics_df["n_clusters"], "-s", color="#ff7f0e")
        ax1.set_xlabel("Leiden resolution")
        ax1.set_ylabel("Silhouette (PCA)", color="#1f77b4")
        ax2.set_ylabel("# clusters", color="#ff7f0e")
        ax1.axvline(chosen_res, color="gray", linestyle="--", linewidth=1)
        fig.tight_layout()
        fig.savefig(save_dir / "leiden_sweep_diagnostics.png", dpi=300, bbox_inches="tight")
        plt.close(fig)
        print(f"  Saved: {metrics_path}")
        print(f"  Saved: {save_dir}/leiden_sweep_diagnostics.png")

    adata.obs["leiden"] = adata.obs[f"leiden_{chosen_res:.2f}"].astype(str).astype("category")
    print(f"Chosen Leiden resolution: {chosen_res}")

    return chosen_res
