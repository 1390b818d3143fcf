#!/usr/bin/env python3
"""
Diversity utilities for microbiome analysis
Handles alpha diversity, Bray-Curtis beta diversity, PCoA and PERMANOVA
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy.spatial.distance import pdist, squareform
from scipy.stats import kruskal, mannwhitneyu
from skbio.diversity import alpha_diversity
from skbio.stats.distance import DistanceMatrix, permanova
from skbio.stats.ordination import pcoa
from statsmodels.stats.multitest import multipletests

from omics_eda.microbiome_params import DIVERSITY_PARAMS


def calculate_alpha_diversity(counts, metrics=None):
    """Calculate alpha diversity per sample

    Args:
        counts: Taxa x samples integer count table
        metrics: scikit-bio alpha metric names

    Returns:
        DataFrame of samples x metrics
    """
    print("Calculating alpha diversity...")

    if metrics is None:
        metrics = DIVERSITY_PARAMS["alpha_metrics"]

    data = np.asarray(counts.T.values, dtype=int)
    ids = list(counts.columns)

    alpha_df = pd.DataFrame(
        {metric: alpha_diversity(metric, data, ids=ids) for metric in metrics}
    )
    alpha_df.index.name = "sample_id"

    print(f"Computed {len(metrics)} metrics for {alpha_df.shape[0]} samples")
    return alpha_df


def _group_labels(metadata, samples, group_col):
    if group_col not in metadata.columns:
        raise KeyError(f"Group column '{group_col}' not found in sample metadata")
    return metadata.loc[samples, group_col].dropna().astype(str)


def compare_alpha_diversity(alpha_df, metadata, group_col):
    """Test alpha diversity differences between groups

    Uses Mann-Whitney U for two groups and Kruskal-Wallis otherwise.
    P-values are BH-adjusted across metrics.

    Args:
        alpha_df: Samples x metrics alpha diversity
        metadata: Sample metadata
        group_col: Column defining the groups

    Returns:
        DataFrame with one row per metric
    """
    print(f"Comparing alpha diversity by {group_col}...")

    groups = _group_labels(metadata, alpha_df.index, group_col)
    levels = sorted(groups.unique())
    if len(levels) < 2:
        raise ValueError(f"Need at least two groups in '{group_col}', found {levels}")

    rows = []
    for metric in alpha_df.columns:
        values = [alpha_df.loc[groups.index[groups == lvl], metric] for lvl in levels]
        if len(levels) == 2:
            stat, pval = mannwhitneyu(values[0], values[1], alternative="two-sided")
            test = "Mann-Whitney U"
        else:
            stat, pval = kruskal(*values)
            test = "Kruskal-Wallis"

        row = {"metric": metric, "test": test, "statistic": stat, "pval": pval}
        for lvl, vals in zip(levels, values):
            row[f"median_{lvl}"] = vals.median()
        rows.append(row)

    results = pd.DataFrame(rows)
    results["padj"] = multipletests(results["pval"], method="fdr_bh")[1]

    for _, row in results.iterrows():
        print(f"  {row['metric']}: {row['test']} p = {row['pval']:.4g} (BH {row['padj']:.4g})")

    return results


def draw_alpha_boxplot(ax, alpha_df, groups, metric):
    data = pd.DataFrame({metric: alpha_df.loc[groups.index, metric], "group": groups})
    order = sorted(groups.unique())
    sns.boxplot(data=data, x="group", y=metric, order=order, ax=ax, color="white")
    sns.stripplot(data=data, x="group", y=metric, order=order, ax=ax, color="k", size=3)
    ax.set_xlabel("")
    ax.set_title(metric.replace("_", " ").capitalize())


def plot_alpha_diversity(alpha_df, metadata, group_col, metrics=None, ax=None, save_dir=None):
    """Box plots of alpha diversity per group

    Args:
        alpha_df: Samples x metrics alpha diversity
        metadata: Sample metadata
        group_col: Column defining the groups
        metrics: Subset of metrics to plot (default: all)
        ax: Axis or sequence of axes (one per metric) to draw into. The caller
            owns the figure, nothing is saved or shown.
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting alpha diversity...")

    if metrics is None:
        metrics = list(alpha_df.columns)

    groups = _group_labels(metadata, alpha_df.index, group_col)

    if ax is not None:
        axes = np.atleast_1d(ax)
        if len(axes) != len(metrics):
            raise ValueError(f"Got {len(axes)} axes for {len(metrics)} metrics")
        for a, metric in zip(axes, metrics):
            draw_alpha_boxplot(a, alpha_df, groups, metric)
        return axes

    fig, axes = plt.subplots(1, len(metrics), figsize=(4 * len(metrics), 4))
    axes = np.atleast_1d(axes)
    for a, metric in zip(axes, metrics):
        draw_alpha_boxplot(a, alpha_df, groups, metric)

    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "alpha_diversity.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/alpha_diversity.png")
        plt.close(fig)
    else:
        plt.show()


def calculate_beta_diversity(abundance, metric=None):
    """Pairwise between-sample dissimilarity

    Args:
        abundance: Taxa x samples table (relative abundance or counts)
        metric: scipy distance name (default: Bray-Curtis)

    Returns:
        scikit-bio DistanceMatrix over samples
    """
    if metric is None:
        metric = DIVERSITY_PARAMS["beta_metric"]

    print(f"Calculating beta diversity ({metric})...")

    totals = abundance.sum(axis=0)
    if (totals <= 0).any():
        empty = totals.index[totals <= 0].tolist()
        raise ValueError(f"Samples with no abundance cannot be compared: {empty}")

    distances = squareform(pdist(abundance.T.values, metric=metric))
    return DistanceMatrix(distances, ids=[str(s) for s in abundance.columns])


def run_pcoa(dm, n_axes=None):
    """Principal coordinates analysis of a distance matrix

    Returns:
        Tuple of (coordinates DataFrame with PC1.. columns, proportion explained Series)
    """
    if n_axes is None:
        n_axes = DIVERSITY_PARAMS["n_pcoa_axes"]

    print("Running PCoA...")
    ordination = pcoa(dm)

    coords = ordination.samples.iloc[:, :n_axes].copy()
    coords.columns = [f"PC{i + 1}" for i in range(coords.shape[1])]
    coords.index = list(dm.ids)
    coords.index.name = "sample_id"

    proportions = ordination.proportion_explained.iloc[:n_axes].copy()
    proportions.index = coords.columns

    print("  Variance explained: " + ", ".join(
        f"{pc} {p*100:.1f}%" for pc, p in proportions.items()
    ))
    return coords, proportions


def run_permanova(dm, metadata, group_col, permutations=None):
    """PERMANOVA test of group separation

    Samples without a group label are left out.

    Returns:
        Dict with the test statistic, p-value, sample size and number of groups
    """
    if permutations is None:
        permutations = DIVERSITY_PARAMS["permutations"]

    print(f"Running PERMANOVA on {group_col}...")

    groups = _group_labels(metadata, list(dm.ids), group_col)
    dm_sub = dm.filter(groups.index.tolist())
    grouping = pd.DataFrame({group_col: groups})

    res = permanova(dm_sub, grouping=grouping, column=group_col, permutations=permutations)

    result = {
        "test_statistic": float(res["test statistic"]),
        "pval": float(res["p-value"]) if permutations > 0 else np.nan,
        "sample_size": int(res["sample size"]),
        "n_groups": int(res["number of groups"]),
        "permutations": int(permutations),
    }
    print(f"  pseudo-F = {result['test_statistic']:.3f}, p = {result['pval']:.4g}")
    return result


def draw_pcoa(ax, coords, proportions, groups):
    data = coords.loc[groups.index].copy()
    data["group"] = groups
    sns.scatterplot(data=data, x="PC1", y="PC2", hue="group", ax=ax, s=30)
    ax.set_xlabel(f"PC1 ({proportions['PC1'] * 100:.1f}%)")
    ax.set_ylabel(f"PC2 ({proportions['PC2'] * 100:.1f}%)")
    ax.set_title("Bray-Curtis PCoA")
    ax.legend(title="", frameon=False)


def plot_pcoa(coords, proportions, metadata, group_col, ax=None, save_dir=None):
    """PCoA scatter plot colored by group

    Args:
        coords: PCoA coordinates from ``run_pcoa``
        proportions: Proportion explained from ``run_pcoa``
        metadata: Sample metadata
        group_col: Column used for coloring
        ax: Axis to draw into. The caller owns the figure, nothing is saved or shown.
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting PCoA...")

    groups = _group_labels(metadata, coords.index, group_col)

    if ax is not None:
        draw_pcoa(ax, coords, proportions, groups)
        return ax

    fig, ax = plt.subplots(figsize=(6, 5))
    draw_pcoa(ax, coords, proportions, groups)
    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "beta_diversity_pcoa.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/beta_diversity_pcoa.png")
        plt.close(fig)
    else:
        plt.show()
