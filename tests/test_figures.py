import numpy as np
import pytest

from omics_eda.annotation import label_clusters
from omics_eda.curated_data import relative_to_counts
from omics_eda.differential_abundance import run_differential_abundance
from omics_eda.diversity import calculate_alpha_diversity, calculate_beta_diversity, run_pcoa
from omics_eda.figures import (
    PBMC_FIGURE_LAYOUT,
    assemble_microbiome_figure,
    assemble_pbmc_figure,
)


@pytest.fixture
def embedded(processed_adata):
    rng = np.random.default_rng(0)
    adata = processed_adata
    adata.obsm["X_tsne"] = rng.normal(size=(adata.n_obs, 2))
    adata.obs["leiden"] = adata.obs["true_group"].map({"T": "0", "B": "1"}).astype("category")
    return label_clusters(adata, {"0": "T cells", "1": "B cells"})


def test_pbmc_figure_grid(embedded, tmp_path):
    path = tmp_path / "figure" / "pbmc68k_tsne_figure.png"
    fig = assemble_pbmc_figure(embedded, save_path=path)

    assert path.exists()
    n_panels = 2 + len(PBMC_FIGURE_LAYOUT["markers"])
    assert len([ax for ax in fig.axes if ax.get_label() != "<colorbar>"]) >= n_panels


def test_pbmc_figure_handles_missing_marker(embedded, tmp_path):
    layout = dict(PBMC_FIGURE_LAYOUT, markers=["CD3D", "NOT_A_GENE"])
    assemble_pbmc_figure(embedded, save_path=tmp_path / "fig.png", layout=layout)
    assert (tmp_path / "fig.png").exists()


def test_pbmc_figure_requires_tsne(embedded):
    del embedded.obsm["X_tsne"]
    with pytest.raises(KeyError):
        assemble_pbmc_figure(embedded)


def test_pbmc_figure_requires_labels(embedded):
    with pytest.raises(KeyError):
        assemble_pbmc_figure(embedded, celltype_key="missing")


def test_microbiome_figure(cohort, tmp_path):
    metadata, relab, counts = cohort
    alpha_df = calculate_alpha_diversity(counts)
    coords, proportions = run_pcoa(calculate_beta_diversity(relab))
    da_results = run_differential_abundance(
        counts, metadata, "study_condition", "control", method="wilcoxon"
    )

    fig = assemble_microbiome_figure(
        alpha_df, coords, proportions, da_results, metadata, "study_condition",
        save_path=tmp_path / "skin_microbiome_figure.png",
    )
    assert (tmp_path / "skin_microbiome_figure.png").exists()
    assert len(fig.axes) == 3


def test_microbiome_figure_without_da(cohort, tmp_path):
    metadata, relab, counts = cohort
    alpha_df = calculate_alpha_diversity(counts)
    coords, proportions = run_pcoa(calculate_beta_diversity(relab))

    assemble_microbiome_figure(
        alpha_df, coords, proportions, None, metadata, "study_condition",
        save_path=tmp_path / "fig.png",
    )
    assert (tmp_path / "fig.png").exists()

    with pytest.raises(KeyError):
        assemble_microbiome_figure(alpha_df, coords, proportions, None, metadata, "missing")


def test_microbiome_figure_falls_back_to_first_metric(cohort, tmp_path):
    metadata, relab, counts = cohort
    alpha_df = calculate_alpha_diversity(counts, metrics=["observed_features", "simpson"])
    coords, proportions = run_pcoa(calculate_beta_diversity(relab))

    fig = assemble_microbiome_figure(
        alpha_df, coords, proportions, None, metadata, "study_condition",
        save_path=tmp_path / "fig.png",
    )
    assert fig.axes[0].get_title() == "Observed features"
