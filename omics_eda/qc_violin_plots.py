#!/usr/bin/env python3
"""
QC violin plots drawn with seaborn, with the active filter thresholds marked
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from omics_eda.qc_filters import CELL_FILTERS

QC_METRICS = [
    ("n_genes_by_counts", "Genes per cell"),
    ("total_counts", "UMIs per cell"),
    ("percent_mt", "Mitochondrial %"),
    ("percent_ribo", "Ribosomal %"),
]

# metric -> (lower filter key, upper filter key)
THRESHOLD_KEYS = {
    "n_genes_by_counts": ("min_genes", "max_genes"),
    "total_counts": ("min_counts", "max_counts"),
    "percent_mt": (None, "max_mt_pct"),
}


def create_true_violin_plots(adata, save_dir=None, max_points=5000, random_state=0):
    """Violin plots of QC metrics with threshold lines

    Args:
        adata: AnnData object with QC metrics
        save_dir: Directory to save plots (optional)
        max_points: Cells subsampled for the overlaid strip plot
    """
    print("Creating QC violin plots...")

    qc_data = pd.DataFrame({metric: adata.obs[metric] for metric, _ in QC_METRICS})

    # Subsample cells for the strip overlay
    if qc_data.shape[0] > max_points:
        rng = np.random.default_rng(random_state)
        strip_data = qc_data.iloc[rng.choice(qc_data.shape[0], max_points, replace=False)]
    else:
        strip_data = qc_data

    fig, axes = plt.subplots(1, 4, figsize=(16, 4))

    for ax, (metric, title) in zip(axes, QC_METRICS):
        sns.violinplot(data=qc_data, y=metric, ax=ax, color="skyblue", inner=None)
        sns.stripplot(data=strip_data, y=metric, ax=ax, color="black", alpha=0.2, size=1)

        lower, upper = THRESHOLD_KEYS.get(metric, (None, None))
        for key in (lower, upper):
            if key is not None and CELL_FILTERS.get(key) is not None:
                ax.axhline(y=CELL_FILTERS[key], color="red", linestyle="--", alpha=0.5)

        ax.set_ylabel(title)
        ax.set_xlabel("")
        ax.set_title(title)

    plt.tight_layout()

    if save_dir:
        fig.savefig(save_dir / "qc_violin_plots.png", dpi=300, bbox_inches="tight")
        print(f"  Saved: {save_dir}/qc_violin_plots.png")
        plt.close(fig)
    else:
        plt.show()

    return fig
