#!/usr/bin/env python3
"""
Analysis parameters for the skin microbiome notebook

This file centralizes the sample query, diversity and differential-abundance
settings. Modify these values to change the cohort or the test stringency.
"""

# Which curated samples to analyse
SKIN_QUERY = {
    "body_site": "skin",
    "study_name": "ChngKR_2016",
    "disease": None,  # None = any disease label
    "study_condition": None,
}

# Group comparison used for alpha tests, PERMANOVA and ANCOM-BC
GROUPING = {
    "group_col": "study_condition",
    "reference": "control",
}

# Rank columns of the taxonomy table, in lineage order
TAXONOMIC_RANKS = [
    "superkingdom",
    "phylum",
    "class",
    "order",
    "family",
    "genus",
    "species",
]

# MetaPhlAn lineage prefixes mapped onto the rank columns
RANK_PREFIXES = {
    "k": "superkingdom",
    "p": "phylum",
    "c": "class",
    "o": "order",
    "f": "family",
    "g": "genus",
    "s": "species",
}

DIVERSITY_PARAMS = {
    "alpha_metrics": ["shannon", "simpson", "observed_features"],
    "beta_metric": "braycurtis",
    "n_pcoa_axes": 2,
    "permutations": 999,
}

DA_PARAMS = {
    "rank": "genus",  # Agglomerate to this rank before testing
    "min_prevalence": 0.10,  # Fraction of samples a taxon must be present in
    "min_count": 1,
    "pseudocount": 1,
    "max_iter": 100,
    "tol": 1e-5,
    "alpha": 0.05,
    "p_adjust": "holm",
    "min_samples_per_group": 3,
    "lfc_threshold": 0.0,
}


def get_params_summary():
    """Return a formatted summary of current microbiome settings"""
    query = ", ".join(f"{k}={v}" for k, v in SKIN_QUERY.items() if v is not None)
    summary = [
        "=== Skin Microbiome Settings ===",
        f"\nSample query: {query}",
        f"Grouping: {GROUPING['group_col']} (reference: {GROUPING['reference']})",
        "\nDiversity:",
        f"  - Alpha metrics: {', '.join(DIVERSITY_PARAMS['alpha_metrics'])}",
        f"  - Beta metric: {DIVERSITY_PARAMS['beta_metric']}",
        f"  - PERMANOVA permutations: {DIVERSITY_PARAMS['permutations']}",
        "\nDifferential abundance (ANCOM-BC):",
        f"  - Rank: {DA_PARAMS['rank']}",
        f"  - Min prevalence: {DA_PARAMS['min_prevalence']*100:.0f}%",
        f"  - Alpha: {DA_PARAMS['alpha']} ({DA_PARAMS['p_adjust']} adjusted)",
    ]
    return "\n".join(summary)


def validate_params():
    """Validate that analysis parameters make sense"""
    errors = []

    if DA_PARAMS["rank"] not in TAXONOMIC_RANKS:
        errors.append(f"DA rank must be one of {TAXONOMIC_RANKS}")

    if sorted(RANK_PREFIXES.values()) != sorted(TAXONOMIC_RANKS):
        errors.append("RANK_PREFIXES must cover every taxonomic rank exactly once")

    if not 0 <= DA_PARAMS["min_prevalence"] <= 1:
        errors.append("min_prevalence must be between 0 and 1")

    if not 0 < DA_PARAMS["alpha"] < 1:
        errors.append("alpha must be between 0 and 1")

    if DA_PARAMS["pseudocount"] < 0:
        errors.append("pseudocount must be non-negative")

    if DA_PARAMS["min_samples_per_group"] < 2:
        errors.append("min_samples_per_group must be at least 2")

    if DIVERSITY_PARAMS["n_pcoa_axes"] < 2:
        errors.append("n_pcoa_axes must be at least 2")

    if DIVERSITY_PARAMS["permutations"] < 0:
        errors.append("permutations must be non-negative")

    if errors:
        raise ValueError("Parameter validation failed:\n" + "\n".join(errors))

    return True


# Run validation on import
validate_params()
