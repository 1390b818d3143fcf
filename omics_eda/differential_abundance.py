#!/usr/bin/env python3
"""
Differential abundance analysis utilities for microbiome analysis
Handles prevalence filtering, ANCOM-BC modeling and result plots
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats
from skbio.stats.composition import ancombc, clr
from statsmodels.stats.multitest import multipletests

from omics_eda.microbiome_params import DA_PARAMS

# scikit-bio result columns -> tidy names
ANCOMBC_COLUMNS = {
    "FeatureID": "taxon",
    "Covariate": "covariate",
    "Log2(FC)": "lfc",
    "Log(FC)": "lfc",
    "SE": "se",
    "W": "W",
    "pvalue": "pval",
    "qvalue": "qval",
}

RESULT_COLUMNS = [
    "taxon",
    "covariate",
    "lfc",
    "se",
    "W",
    "pval",
    "qval",
    "significant",
    "enriched",
    "depleted",
]


def filter_taxa_by_prevalence(counts, min_prevalence=None, min_count=None):
    """Keep taxa present in enough samples

    Args:
        counts: Taxa x samples count table
        min_prevalence: Minimum fraction of samples with count >= min_count
        min_count: Count threshold defining presence

    Returns:
        Filtered count table
    """
    if min_prevalence is None:
        min_prevalence = DA_PARAMS["min_prevalence"]
    if min_count is None:
        min_count = DA_PARAMS["min_count"]

    print("Filtering taxa for DA analysis...")

    prevalence = (counts >= min_count).mean(axis=1)
    filtered = counts.loc[prevalence >= min_prevalence]

    print(f"Kept {filtered.shape[0]} of {counts.shape[0]} taxa after prevalence filtering")
    return filtered


def _flag_significance(results, alpha, lfc_threshold):
    results["significant"] = (
        results["qval"].notna()
        & (results["qval"] < alpha)
        & (results["lfc"].abs() > lfc_threshold)
    )
    results["enriched"] = results["significant"] & (results["lfc"] > 0)
    results["depleted"] = results["significant"] & (results["lfc"] < 0)
    return results


def tidy_ancombc_results(raw, alpha=None, lfc_threshold=None):
    """Rename scikit-bio ANCOM-BC output and add significance flags

    The intercept rows are dropped.

    Args:
        raw: ``skbio.stats.composition.ancombc`` output, either the result
            object (table on ``.result``) or the table itself
        alpha: Significance level on the adjusted p-value
        lfc_threshold: Minimum absolute log fold change

    Returns:
        DataFrame with RESULT_COLUMNS
    """
    if alpha is None:
        alpha = DA_PARAMS["alpha"]
    if lfc_threshold is None:
        lfc_threshold = DA_PARAMS["lfc_threshold"]

    results = getattr(raw, "result", raw).copy()
    if "FeatureID" not in results.columns:
        results = results.reset_index()
        results = results.rename(columns={results.columns[0]: "FeatureID"})

    results = results.rename(columns=ANCOMBC_COLUMNS)
    missing = [c for c in ANCOMBC_COLUMNS.values() if c not in results.columns]
    if missing:
        raise KeyError(f"ANCOM-BC output is missing columns: {missing}")

    results = results[results["covariate"].astype(str) != "Intercept"].copy()
    results = _flag_significance(results, alpha, lfc_threshold)
    return results[RESULT_COLUMNS].reset_index(drop=True)


def _set_reference(metadata, group_col, reference):
    """Order the group column so the reference level comes first"""
    meta = metadata.copy()
    levels = sorted(meta[group_col].dropna().astype(str).unique())
    if reference is not None:
        if reference not in levels:
            raise ValueError(f"Reference '{reference}' not found in '{group_col}': {levels}")
        levels = [reference] + [lvl for lvl in levels if lvl != reference]
    meta[group_col] = pd.Categorical(meta[group_col].astype(str), categories=levels)
    return meta


def run_ancombc(
    counts,
    metadata,
    formula,
    group_col=None,
    reference=None,
    pseudocount=None,
    max_iter=None,
    tol=None,
    alpha=None,
    p_adjust=None,
    lfc_threshold=None,
):
    """Run ANCOM-BC on a count table

    Args:
        counts: Taxa x samples count table
        metadata: Sample metadata indexed by sample id
        formula: Model formula over metadata columns (e.g. "study_condition")
        group_col: Categorical column whose reference level should be set
        reference: Reference level of ``group_col``
        pseudocount: Added to every count before log transformation

    Returns:
        Tidy DataFrame with per-taxon lfc, se, W, pval, qval and flags
    """
    pseudocount = DA_PARAMS["pseudocount"] if pseudocount is None else pseudocount
    max_iter = DA_PARAMS["max_iter"] if max_iter is None else max_iter
    tol = DA_PARAMS["tol"] if tol is None else tol
    alpha = DA_PARAMS["alpha"] if alpha is None else alpha
    p_adjust = DA_PARAMS["p_adjust"] if p_adjust is None else p_adjust

    meta = metadata.loc[counts.columns]
    if group_col is not None:
        meta = _set_reference(meta, group_col, reference)

    table = counts.T.astype(float) + pseudocount

    print(f"  Fitting ANCOM-BC: ~ {formula} ({table.shape[1]} taxa x {table.shape[0]} samples)")

    raw = ancombc(
        table,
        meta,
        formula,
        max_iter=max_iter,
        tol=tol,
        alpha=alpha,
        p_adjust=p_adjust,
    )
    return tidy_ancombc_results(raw, alpha=alpha, lfc_threshold=lfc_threshold)


def run_da_with_wilcoxon(
    counts, metadata, group_col, reference, pseudocount=None, alpha=None, lfc_threshold=None
):
    """Fallback rank test on CLR-transformed abundances

    Each non-reference level is compared against the reference with a
    Mann-Whitney U test per taxon. Fold changes are differences of mean CLR
    values on the log2 scale. P-values are BH-adjusted per comparison.

    Returns:
        DataFrame with RESULT_COLUMNS (W holds the U statistic)
    """
    pseudocount = DA_PARAMS["pseudocount"] if pseudocount is None else pseudocount
    alpha = DA_PARAMS["alpha"] if alpha is None else alpha
    lfc_threshold = DA_PARAMS["lfc_threshold"] if lfc_threshold is None else lfc_threshold

    groups = metadata.loc[counts.columns, group_col].astype(str)
    clr_values = pd.DataFrame(
        clr(counts.T.values.astype(float) + pseudocount),
        index=counts.columns,
        columns=counts.index,
    ) / np.log(2)

    ref_mask = (groups == reference).values
    results = []
    for level in sorted(set(groups) - {reference}):
        level_mask = (groups == level).values
        print(f"  Testing {level} vs {reference} ({level_mask.sum()} vs {ref_mask.sum()} samples) [Wilcoxon]")

        rows = []
        for taxon in clr_values.columns:
            x = clr_values.loc[level_mask, taxon]
            y = clr_values.loc[ref_mask, taxon]
            stat, pval = stats.mannwhitneyu(x, y, alternative="two-sided")
            diff = x.mean() - y.mean()
            se = np.sqrt(x.var(ddof=1) / len(x) + y.var(ddof=1) / len(y))
            rows.append(
                {
                    "taxon": taxon,
                    "covariate": f"{group_col}[T.{level}]",
                    "lfc": diff,
                    "se": se,
                    "W": stat,
                    "pval": pval,
                }
            )

        level_df = pd.DataFrame(rows)
        level_df["qval"] = multipletests(level_df["pval"], method="fdr_bh")[1]
        results.append(level_df)

    if not results:
        return None

    combined = pd.concat(results, ignore_index=True)
    combined = _flag_significance(combined, alpha, lfc_threshold)
    return combined[RESULT_COLUMNS]


def run_differential_abundance(
    counts, metadata, group_col, reference, method="ancombc", min_samples_per_group=None
):
    """Run differential abundance between groups of samples

    Groups with too few samples are dropped with a warning; the comparison is
    skipped entirely if the reference or every other group is dropped.

    Args:
        counts: Taxa x samples count table (already prevalence filtered)
        metadata: Sample metadata
        group_col: Column defining the groups
        reference: Reference level
        method: "ancombc" or "wilcoxon"
        min_samples_per_group: Minimum samples required in each group

    Returns:
        Tidy results DataFrame or None when the comparison is skipped
    """
    if min_samples_per_group is None:
        min_samples_per_group = DA_PARAMS["min_samples_per_group"]
    if group_col not in metadata.columns:
        raise KeyError(f"Group column '{group_col}' not found in sample metadata")

    print(f"\n{'='*60}")
    print(f"DIFFERENTIAL ABUNDANCE: {group_col} (reference: {reference})")
    print(f"{'='*60}")

    groups = metadata.loc[counts.columns, group_col].dropna().astype(str)
    sizes = groups.value_counts()
    small = sizes[sizes < min_samples_per_group]
    for level, n in small.items():
        print(f"⚠️  Dropping group '{level}': only {n} samples")

    keep_levels = sizes.index[sizes >= min_samples_per_group]
    if reference not in keep_levels or len(keep_levels) < 2:
        print(f"⚠️  Skipping {group_col}: not enough samples to compare against '{reference}'")
        return None

    samples = groups.index[groups.isin(keep_levels)]
    sub_counts = counts[samples]
    sub_counts = sub_counts.loc[sub_counts.sum(axis=1) > 0]
    sub_meta = metadata.loc[samples]

    if method == "ancombc":
        print("  Method: ANCOM-BC (bias-corrected log-linear model)")
        results = run_ancombc(
            sub_counts, sub_meta, group_col, group_col=group_col, reference=reference
        )
    elif method == "wilcoxon":
        print("  Method: Wilcoxon on CLR abundances (fallback)")
        results = run_da_with_wilcoxon(sub_counts, sub_meta, group_col, reference)
    else:
        raise ValueError(f"Unknown DA method '{method}'")

    if results is not None:
        n_sig = results["significant"].sum()
        n_up = results["enriched"].sum()
        n_down = results["depleted"].sum()
        print(f"    ✓ {n_sig} significant taxa ({n_up} enriched, {n_down} depleted)")

    return results


def summarize_da_results(results):
    """Count significant taxa per covariate

    Returns:
        DataFrame with n_tested, n_significant, n_enriched, n_depleted per covariate
    """
    summary = results.groupby("covariate").agg(
        n_tested=("taxon", "size"),
        n_significant=("significant", "sum"),
        n_enriched=("enriched", "sum"),
        n_depleted=("depleted", "sum"),
    )
    return summary.reset_index()


def draw_da_waterfall(ax, results, covariate, top_n):
    subset = results[(results["covariate"] == covariate) & results["significant"]]
    if subset.empty:
        ax.text(0.5, 0.5, "No significant taxa", ha="center", va="center", transform=ax.transAxes)
        ax.set_title(covariate)
        return

    subset = subset.reindex(subset["lfc"].abs().sort_values(ascending=False).index)
    subset = subset.head(top_n).sort_values("lfc")
    colors = ["#d62728" if x > 0 else "#1f77b4" for x in subset["lfc"]]

    ax.barh(
        range(len(subset)),
        subset["lfc"],
        xerr=subset["se"],
        color=colors,
        alpha=0.8,
        error_kw={"elinewidth": 0.8, "capsize": 2},
    )
    ax.set_yticks(range(len(subset)))
    ax.set_yticklabels(subset["taxon"], fontsize=8)
    ax.axvline(0, color="black", linewidth=0.8)
    ax.set_xlabel("Log fold change")
    ax.set_title(covariate)


def plot_da_waterfall(results, covariate, top_n=30, ax=None, save_dir=None):
    """Waterfall plot of significant log fold changes with SE error bars

    Args:
        results: Tidy DA results
        covariate: Covariate to plot (e.g. "study_condition[T.AD]")
        top_n: Maximum number of taxa shown
        ax: Axis to draw into. The caller owns the figure, nothing is saved or shown.
        save_dir: Directory to save plots (optional). If provided, plots are saved without display.
    """
    print("Plotting DA waterfall...")

    if ax is not None:
        draw_da_waterfall(ax, results, covariate, top_n)
        return ax

    n_sig = int(((results["covariate"] == covariate) & results["significant"]).sum())
    fig, ax = plt.subplots(figsize=(7, max(3, 0.25 * min(n_sig, top_n))))
    draw_da_waterfall(ax, results, covariate, top_n)
    plt.tight_layout()

    if save_dir:
        fname = f"da_waterfall_{covariate.replace('[', '_').replace(']', '').replace('.', '_')}.png"
        fig.savefig(save_dir / fname, dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/{fname}")
        plt.close(fig)
    else:
        plt.show()
