import anndata as ad
import numpy as np
import pandas as pd
import pytest

from omics_eda.annotation import (
    UNKNOWN_LABEL,
    assign_celltypes_by_cluster_scores,
    compare_with_reference,
    create_cluster_aggregated_labels,
    label_clusters,
    load_cluster_labels,
    plot_marker_genes,
)
from omics_eda.cell_type import (
    compare_top_markers_to_expected,
    compute_top_markers_per_cluster,
    plot_cell_type_summary,
)


def obs_only(clusters, labels):
    obs = pd.DataFrame(
        {"leiden": pd.Categorical(clusters), "celltype": labels},
        index=[f"c{i}" for i in range(len(clusters))],
    )
    return ad.AnnData(X=np.zeros((len(clusters), 1)), obs=obs)


@pytest.fixture
def clustered(processed_adata):
    processed_adata.obs["leiden"] = processed_adata.obs["true_group"].astype("category")
    return processed_adata


def test_label_clusters_marks_unmapped(clustered):
    adata = label_clusters(clustered, {"T": "T cells"}, cluster_key="leiden")

    labels = adata.obs["celltype"]
    assert list(labels.cat.categories) == ["T cells", UNKNOWN_LABEL]
    assert (labels[adata.obs["true_group"] == "B"] == UNKNOWN_LABEL).all()


def test_label_clusters_missing_key(clustered):
    with pytest.raises(KeyError):
        label_clusters(clustered, {}, cluster_key="kmeans")


def test_load_cluster_labels(tmp_path):
    path = tmp_path / "labels.tsv"
    path.write_text("cluster\tcelltype\n0\tCD4 T\n1\t B \n")
    assert load_cluster_labels(path) == {"0": "CD4 T", "1": "B"}

    bad = tmp_path / "bad.tsv"
    bad.write_text("cluster\tlabel\n0\tCD4 T\n")
    with pytest.raises(KeyError):
        load_cluster_labels(bad)


def test_assign_celltypes_by_cluster_scores(clustered):
    proposal = assign_celltypes_by_cluster_scores(clustered, groupby="leiden")

    assert set(proposal) == {"B", "T"}
    assert proposal["B"] == "B"
    assert "celltype_proposed" in clustered.obs


def test_cluster_purity():
    adata = obs_only(
        ["0"] * 10 + ["1"] * 10,
        ["A"] * 9 + ["B"] + ["A"] * 5 + ["B"] * 5,
    )
    mixed = create_cluster_aggregated_labels(adata, celltype_col="celltype", cluster_col="leiden")

    assert mixed == ["1"]
    assert adata.obs.loc["c0", "celltype_cluster"] == "A"
    assert adata.obs.loc["c0", "cluster_purity"] == pytest.approx(0.9)
    assert adata.obs.loc["c15", "celltype_cluster"] == "Mixed"


def test_compare_with_reference(tmp_path):
    adata = obs_only(["0", "0", "1", "1"], ["A", "A", "B", "B"])
    adata.obs["bulk_labels"] = ["x", "x", "y", np.nan]

    table, ari = compare_with_reference(adata, save_dir=tmp_path)

    assert ari == pytest.approx(1.0)
    assert table.loc["A", "x"] == pytest.approx(1.0)
    assert (tmp_path / "celltype_vs_bulk_labels.tsv").exists()


def test_marker_tables_and_plots(clustered, tmp_path):
    markers_df = compute_top_markers_per_cluster(clustered, groupby="leiden", n_top=10, save_dir=tmp_path)
    assert {"group", "names", "scores"} <= set(markers_df.columns)
    assert (tmp_path / "top_markers_by_cluster.tsv").exists()

    top_b = markers_df[markers_df["group"] == "B"].head(3)["names"]
    assert set(top_b) <= {"MS4A1", "CD79A", "CD79B"}

    long_df, precision = compare_top_markers_to_expected(markers_df, top_n=3)
    assert precision.loc["B", "B"] == pytest.approx(1.0)
    assert set(long_df["panel"]) >= {"B", "CD4 T"}

    plot_marker_genes(clustered, groupby="leiden", save_dir=tmp_path)
    assert (tmp_path / "marker_genes_dotplot.png").exists()


def test_plot_cell_type_summary(clustered, tmp_path):
    label_clusters(clustered, {"T": "T cells", "B": "B cells"})
    plot_cell_type_summary(clustered, save_dir=tmp_path)
    assert (tmp_path / "celltype_distribution.png").exists()
