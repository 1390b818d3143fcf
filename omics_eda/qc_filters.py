#!/usr/bin/env python3
"""
Quality control and processing parameters for the PBMC 68k analysis

This file centralizes all QC thresholds and embedding/clustering settings.
Modify these values to adjust filtering stringency.
"""

# Cell-level filters
CELL_FILTERS = {
    "min_genes": 200,  # Minimum genes detected per cell
    "max_genes": 2500,  # 3' v1 chemistry, few cells above this
    "min_counts": None,  # Minimum total UMIs per cell (None = no filter)
    "max_counts": None,  # Maximum total UMIs per cell (None = no filter)
    "max_mt_pct": 10,  # Maximum mitochondrial gene percentage
}

# Gene-level filters
GENE_FILTERS = {
    "min_cells": 3,  # Minimum cells expressing a gene
}

# Mitochondrial and ribosomal gene patterns (human)
GENE_PATTERNS = {
    "mt_pattern": "MT-",
    "ribo_pattern": r"^RP[SL]",
}

# Normalization and feature selection
PROCESSING_PARAMS = {
    "target_sum": 1e4,
    "hvg_flavor": "cell_ranger",
    "n_top_genes": 1000,  # Zheng et al. kept the top 1000 dispersed genes
    "max_value": 10,
}

# PCA, t-SNE and clustering
CLUSTERING_PARAMS = {
    "n_comps": 50,
    "n_pcs": 50,
    "n_neighbors": 15,
    "perplexity": 30,
    "method": "leiden",  # "leiden" or "kmeans"
    "resolution": 0.6,
    "n_clusters": 10,  # k-means k used in the published figure
    "random_state": 0,
}


# Filtering summary messages
def get_filter_summary():
    """Return a formatted summary of current filter settings"""
    summary = [
        "=== QC Filter Settings ===",
        "\nCell-level filters:",
        f"  - Genes per cell: {CELL_FILTERS['min_genes']} - {CELL_FILTERS['max_genes']}",
        f"  - Max mitochondrial %: {CELL_FILTERS['max_mt_pct']}%",
    ]

    if CELL_FILTERS["min_counts"] or CELL_FILTERS["max_counts"]:
        summary.append(
            f"  - UMIs per cell: {CELL_FILTERS['min_counts']} - {CELL_FILTERS['max_counts']}"
        )

    summary.extend(
        [
            "\nGene-level filters:",
            f"  - Min cells expressing: {GENE_FILTERS['min_cells']}",
            "\nProcessing:",
            f"  - HVGs: {PROCESSING_PARAMS['n_top_genes']} ({PROCESSING_PARAMS['hvg_flavor']})",
            f"  - Clustering: {CLUSTERING_PARAMS['method']}",
        ]
    )

    return "\n".join(summary)


# Validation function
def validate_filters():
    """Validate that filter parameters make sense"""
    errors = []

    # Check min/max relationships
    if CELL_FILTERS["min_genes"] >= CELL_FILTERS["max_genes"]:
        errors.append("min_genes must be less than max_genes")

    if (
        CELL_FILTERS["min_counts"] is not None
        and CELL_FILTERS["max_counts"] is not None
        and CELL_FILTERS["min_counts"] >= CELL_FILTERS["max_counts"]
    ):
        errors.append("min_counts must be less than max_counts")

    # Check percentage bounds
    if not 0 <= CELL_FILTERS["max_mt_pct"] <= 100:
        errors.append("max_mt_pct must be between 0 and 100")

    if CLUSTERING_PARAMS["method"] not in ("leiden", "kmeans"):
        errors.append("clustering method must be 'leiden' or 'kmeans'")

    if CLUSTERING_PARAMS["n_pcs"] > CLUSTERING_PARAMS["n_comps"]:
        errors.append("n_pcs cannot exceed n_comps")

    if errors:
        raise ValueError("Filter validation failed:\n" + "\n".join(errors))

    return True


# Run validation on import
validate_filters()
