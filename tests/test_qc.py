import numpy as np
import pytest
from scipy import io, sparse

from omics_eda.data_loader import _find_matrix_dir, add_reference_labels, load_10x_data
from omics_eda.qc_utils import calculate_qc_metrics, filter_cells_and_genes, plot_qc_metrics
from omics_eda.qc_violin_plots import create_true_violin_plots
from conftest import MT_GENES, RIBO_GENES


def write_10x_v1(adata, path):
    """Write a CellRanger v1 style matrix directory"""
    path.mkdir()
    io.mmwrite(str(path / "matrix.mtx"), sparse.csr_matrix(adata.X).T.tocoo())
    with open(path / "genes.tsv", "w") as fh:
        for i, gene in enumerate(adata.var_names):
            fh.write(f"ENSG{i:011d}\t{gene}\n")
    with open(path / "barcodes.tsv", "w") as fh:
        fh.write("\n".join(adata.obs_names) + "\n")


def test_load_10x_directory(tmp_path, pbmc_like_adata):
    write_10x_v1(pbmc_like_adata, tmp_path / "matrix")
    adata = load_10x_data(tmp_path / "matrix")

    assert adata.shape == pbmc_like_adata.shape
    assert list(adata.var_names) == list(pbmc_like_adata.var_names)
    assert adata.X.sum() == pytest.approx(pbmc_like_adata.X.sum())


def test_load_10x_rejects_other_paths(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_10x_data(tmp_path / "counts.csv")


def test_find_matrix_dir(tmp_path):
    files = [
        tmp_path / "filtered_matrices_mex" / "hg19" / "barcodes.tsv",
        tmp_path / "filtered_matrices_mex" / "hg19" / "matrix.mtx",
    ]
    assert _find_matrix_dir(files) == tmp_path / "filtered_matrices_mex" / "hg19"
    with pytest.raises(FileNotFoundError):
        _find_matrix_dir(files[:1])


def test_add_reference_labels(tmp_path, pbmc_like_adata):
    path = tmp_path / "annotation.tsv"
    with open(path, "w") as fh:
        fh.write("TSNE.1\tTSNE.2\tbarcodes\tcelltype\n")
        fh.write("0.1\t0.2\tCELL000-1\tCD4+/CD45RO+ Memory\n")
        fh.write("0.3\t0.4\tCELL150-1\tCD19+ B\n")

    adata = add_reference_labels(pbmc_like_adata, path)
    assert adata.obs.loc["CELL150-1", "bulk_labels"] == "CD19+ B"
    assert adata.obs["bulk_labels"].notna().sum() == 2


def test_calculate_qc_metrics(pbmc_like_adata):
    adata = calculate_qc_metrics(pbmc_like_adata)

    assert adata.var["mt"].sum() == len(MT_GENES)
    assert adata.var["ribo"].sum() == len(RIBO_GENES)
    for col in ("n_genes_by_counts", "total_counts", "percent_mt", "percent_ribo"):
        assert col in adata.obs

    X = adata.X.toarray()
    expected = X[:, adata.var["mt"].values].sum(axis=1) / X.sum(axis=1) * 100
    np.testing.assert_allclose(adata.obs["percent_mt"].values, expected, rtol=1e-5)


def test_filter_cells_and_genes(pbmc_like_adata):
    adata = calculate_qc_metrics(pbmc_like_adata)
    # Inflate the mitochondrial fraction of one cell so it is removed
    X = adata.X.toarray()
    X[0, adata.var["mt"].values] = 10_000
    adata.X = sparse.csr_matrix(X)
    adata = calculate_qc_metrics(adata)

    filtered = filter_cells_and_genes(adata, min_genes=10, max_genes=1000, max_mt_pct=20)

    assert "CELL000-1" not in filtered.obs_names
    assert (filtered.obs["percent_mt"] < 20).all()
    assert filtered.n_obs == adata.n_obs - 1


def test_filter_cells_count_bounds(pbmc_like_adata):
    adata = calculate_qc_metrics(pbmc_like_adata)
    cutoff = float(np.median(adata.obs["total_counts"]))
    filtered = filter_cells_and_genes(
        adata, min_genes=10, max_genes=1000, max_mt_pct=100, max_counts=cutoff
    )
    assert (filtered.obs["total_counts"] <= cutoff).all()
    assert filtered.n_obs < adata.n_obs


def test_qc_plots_are_saved(tmp_path, pbmc_like_adata):
    adata = calculate_qc_metrics(pbmc_like_adata)
    plot_qc_metrics(adata, save_dir=tmp_path)
    fig = create_true_violin_plots(adata, save_dir=tmp_path, max_points=50)

    assert (tmp_path / "qc_scatter_plots.png").exists()
    assert (tmp_path / "qc_violin_plots.png").exists()
    assert len(fig.axes) == 4
