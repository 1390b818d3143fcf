import numpy as np
import pandas as pd
import pytest

from omics_eda import differential_abundance
from omics_eda.differential_abundance import (
    RESULT_COLUMNS,
    filter_taxa_by_prevalence,
    plot_da_waterfall,
    run_differential_abundance,
    summarize_da_results,
    tidy_ancombc_results,
)


def fake_ancombc_output(taxa, covariate="study_condition[T.AD]"):
    rows = []
    for i, taxon in enumerate(taxa):
        for cov in ("Intercept", covariate):
            rows.append(
                {
                    "FeatureID": taxon,
                    "Covariate": cov,
                    "Log2(FC)": 2.0 if i == 0 else -0.1,
                    "SE": 0.3,
                    "W": 6.7 if i == 0 else -0.3,
                    "pvalue": 1e-4 if i == 0 else 0.7,
                    "qvalue": 1e-3 if i == 0 else 0.9,
                    "Signif": i == 0,
                }
            )
    return pd.DataFrame(rows)


def test_filter_taxa_by_prevalence():
    counts = pd.DataFrame(
        {"A": [5, 0, 1], "B": [3, 0, 0], "C": [1, 2, 0], "D": [0, 0, 0]},
        index=["common", "rare", "single"],
    )
    filtered = filter_taxa_by_prevalence(counts, min_prevalence=0.5, min_count=1)
    assert list(filtered.index) == ["common"]


def test_tidy_ancombc_results_drops_intercept():
    raw = fake_ancombc_output(["t0", "t1"])
    tidy = tidy_ancombc_results(raw, alpha=0.05, lfc_threshold=0.0)

    assert list(tidy.columns) == RESULT_COLUMNS
    assert set(tidy["covariate"]) == {"study_condition[T.AD]"}
    assert tidy.set_index("taxon").loc["t0", "enriched"]
    assert not tidy.set_index("taxon").loc["t1", "significant"]


def test_tidy_ancombc_results_accepts_feature_index():
    raw = fake_ancombc_output(["t0"]).set_index("FeatureID")
    raw.index.name = None
    tidy = tidy_ancombc_results(raw)
    assert tidy["taxon"].tolist() == ["t0"]


def test_tidy_ancombc_results_missing_columns():
    raw = fake_ancombc_output(["t0"]).drop(columns="SE")
    with pytest.raises(KeyError):
        tidy_ancombc_results(raw)


def test_run_ancombc_passes_reference_and_pseudocount(cohort, monkeypatch):
    metadata, _, counts = cohort
    seen = {}

    def fake_ancombc(table, meta, formula, **kwargs):
        seen["table"] = table
        seen["meta"] = meta
        seen["formula"] = formula
        seen["kwargs"] = kwargs
        return fake_ancombc_output(list(table.columns))

    monkeypatch.setattr(differential_abundance, "ancombc", fake_ancombc)

    results = run_differential_abundance(counts, metadata, "study_condition", "control")

    assert seen["formula"] == "study_condition"
    assert seen["table"].shape == (12, counts.shape[0])
    assert seen["table"].values.min() >= 1
    assert list(seen["meta"]["study_condition"].cat.categories) == ["control", "AD"]
    assert seen["kwargs"]["p_adjust"] == "holm"
    assert list(results.columns) == RESULT_COLUMNS
    assert results["significant"].sum() == 1


def test_wilcoxon_detects_enriched_taxon(cohort, tmp_path):
    metadata, _, counts = cohort
    results = run_differential_abundance(
        counts, metadata, "study_condition", "control", method="wilcoxon"
    )

    assert list(results.columns) == RESULT_COLUMNS
    assert set(results["covariate"]) == {"study_condition[T.AD]"}
    top = results.set_index("taxon").loc["Genus0_species0"]
    assert top["significant"]
    assert top["enriched"]
    assert top["lfc"] > 0

    summary = summarize_da_results(results)
    assert summary.loc[0, "n_tested"] == counts.shape[0]
    assert summary.loc[0, "n_enriched"] >= 1

    plot_da_waterfall(results, "study_condition[T.AD]", save_dir=tmp_path)
    assert (tmp_path / "da_waterfall_study_condition_T_AD.png").exists()


def test_small_groups_are_dropped(cohort):
    metadata, _, counts = cohort
    metadata = metadata.copy()
    metadata.loc[["S01", "S02"], "study_condition"] = "psoriasis"
    results = run_differential_abundance(
        counts, metadata, "study_condition", "control", method="wilcoxon"
    )
    assert set(results["covariate"]) == {"study_condition[T.AD]"}


def test_skipped_when_reference_too_small(cohort):
    metadata, _, counts = cohort
    results = run_differential_abundance(
        counts, metadata, "study_condition", "control", min_samples_per_group=7
    )
    assert results is None


def test_unknown_method(cohort):
    metadata, _, counts = cohort
    with pytest.raises(ValueError):
        run_differential_abundance(counts, metadata, "study_condition", "control", method="deseq")


def test_unknown_reference(cohort, monkeypatch):
    metadata, _, counts = cohort
    monkeypatch.setattr(differential_abundance, "ancombc", lambda *a, **k: None)
    with pytest.raises(ValueError):
        differential_abundance.run_ancombc(
            counts, metadata, "study_condition", group_col="study_condition", reference="healthy"
        )


def test_summarize_counts_flags():
    results = pd.DataFrame(
        {
            "taxon": ["a", "b", "c"],
            "covariate": ["x"] * 3,
            "significant": [True, True, False],
            "enriched": [True, False, False],
            "depleted": [False, True, False],
        }
    )
    summary = summarize_da_results(results)
    assert summary.loc[0, ["n_tested", "n_significant", "n_enriched", "n_depleted"]].tolist() == [3, 2, 1, 1]
    assert np.issubdtype(summary["n_significant"].dtype, np.integer)


class AncombcResult:
    """Result object shape returned by newer scikit-bio releases"""

    def __init__(self, result):
        self.result = result


def test_tidy_ancombc_results_unwraps_result_object():
    raw = fake_ancombc_output(["t0", "t1"]).rename(columns={"Log2(FC)": "Log(FC)"})
    raw = raw.set_index(["FeatureID", "Covariate"])
    tidy = tidy_ancombc_results(AncombcResult(raw))

    assert list(tidy.columns) == RESULT_COLUMNS
    assert tidy["taxon"].tolist() == ["t0", "t1"]
    assert tidy["lfc"].tolist() == [2.0, -0.1]


def test_ancombc_on_cohort(cohort):
    metadata, _, counts = cohort
    results = run_differential_abundance(counts, metadata, "study_condition", "control")

    assert list(results.columns) == RESULT_COLUMNS
    assert set(results["covariate"]) == {"study_condition[T.AD]"}
    assert set(results["taxon"]) == set(counts.index)
    assert results.set_index("taxon").loc["Genus0_species0", "lfc"] > 0


def test_plot_da_waterfall_into_axis(cohort):
    import matplotlib.pyplot as plt

    metadata, _, counts = cohort
    results = run_differential_abundance(
        counts, metadata, "study_condition", "control", method="wilcoxon"
    )
    fig, ax = plt.subplots()
    returned = plot_da_waterfall(results, "study_condition[T.AD]", ax=ax)

    assert returned is ax
    assert len(ax.patches) >= 1
