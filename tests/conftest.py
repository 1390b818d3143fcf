import matplotlib

matplotlib.use("Agg")

import anndata as ad
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from scipy import sparse

T_MARKERS = ["CD3D", "IL7R"]
B_MARKERS = ["MS4A1", "CD79A", "CD79B"]
OTHER_MARKERS = ["CD14", "LYZ", "NKG7"]
MT_GENES = ["MT-CO1", "MT-ND1", "MT-ATP6"]
RIBO_GENES = ["RPS3", "RPL13"]

N_SPECIES = 8
N_GENERA = 4


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def pbmc_like_adata():
    """Raw UMI counts for 100 T-like and 100 B-like cells"""
    rng = np.random.default_rng(0)
    n_cells, n_background = 200, 150

    background = [f"GENE{i}" for i in range(n_background)]
    genes = T_MARKERS + B_MARKERS + OTHER_MARKERS + MT_GENES + RIBO_GENES + background

    lam = np.ones((n_cells, len(genes)))
    lam[:, -n_background:] = rng.uniform(0.2, 15.0, n_background)
    lam[:, [genes.index(g) for g in MT_GENES]] = 2.0
    lam[:, [genes.index(g) for g in RIBO_GENES]] = 5.0

    group = np.repeat(["T", "B"], n_cells // 2)
    lam[np.ix_(group == "T", [genes.index(g) for g in T_MARKERS])] = 20.0
    lam[np.ix_(group == "B", [genes.index(g) for g in B_MARKERS])] = 20.0

    X = rng.poisson(lam).astype(np.float32)
    obs = pd.DataFrame(
        {"true_group": group}, index=[f"CELL{i:03d}-1" for i in range(n_cells)]
    )
    return ad.AnnData(X=sparse.csr_matrix(X), obs=obs, var=pd.DataFrame(index=genes))


@pytest.fixture
def processed_adata(pbmc_like_adata):
    from omics_eda.processing import normalize_and_scale
    from omics_eda.qc_utils import calculate_qc_metrics

    adata = calculate_qc_metrics(pbmc_like_adata)
    return normalize_and_scale(adata, flavor="seurat", n_top_genes=50)


def lineage(i):
    g = i % N_GENERA
    p = g % 2
    return (
        f"k__Bacteria|p__Phylum{p}|c__Class{p}|o__Order{p}|f__Family{g}"
        f"|g__Genus{g}|s__Genus{g}_species{i}"
    )


@pytest.fixture
def sample_metadata():
    rng = np.random.default_rng(1)
    skin = [f"S{i:02d}" for i in range(1, 13)]
    other = ["X01", "X02"]
    condition = ["control"] * 6 + ["AD"] * 6

    metadata = pd.DataFrame(
        {
            "study_name": ["ChngKR_2016"] * 12 + ["OtherStudy"] * 2,
            "body_site": ["skin"] * 12 + ["stool"] * 2,
            "study_condition": condition + ["control", "control"],
            "disease": ["healthy"] * 6 + ["AD;skin_disease"] * 6 + ["healthy", "IBD"],
            "number_reads": rng.integers(100_000, 200_000, size=14),
        },
        index=pd.Index(skin + other, name="sample_id"),
    )
    return metadata


@pytest.fixture
def relative_abundance(sample_metadata):
    """Species x samples percent abundance; AD samples dominated by species 0"""
    rng = np.random.default_rng(2)
    columns = {}
    for sample, condition in sample_metadata["study_condition"].items():
        alpha = np.full(N_SPECIES, 5.0)
        if condition == "AD" and sample.startswith("S"):
            alpha[0] = 50.0
        columns[sample] = rng.dirichlet(alpha) * 100

    relab = pd.DataFrame(columns, index=[f"Genus{i % N_GENERA}_species{i}" for i in range(N_SPECIES)])
    relab.index.name = "taxon"
    return relab


@pytest.fixture
def cohort(sample_metadata, relative_abundance):
    """Skin-only metadata with matching integer counts"""
    from omics_eda.curated_data import relative_to_counts

    metadata = sample_metadata[sample_metadata["body_site"] == "skin"].copy()
    relab = relative_abundance[metadata.index]
    return metadata, relab, relative_to_counts(relab, metadata)


@pytest.fixture
def metadata_file(tmp_path, sample_metadata):
    path = tmp_path / "sampleMetadata.tsv"
    sample_metadata.reset_index().to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def abundance_file(tmp_path, relative_abundance):
    """MetaPhlAn-style merged table with a preamble and a genus-level row"""
    table = relative_abundance.copy()
    table.index = [lineage(i) for i in range(N_SPECIES)]
    genus_row = table.iloc[[0, 4]].sum().to_frame().T
    genus_row.index = [lineage(0).rsplit("|", 1)[0]]
    table = pd.concat([genus_row, table])

    path = tmp_path / "relative_abundance.tsv"
    with open(path, "w") as fh:
        fh.write("#mpa_v30_CHOCOPhlAn_201901\n")
        table.index.name = "clade_name"
        table.to_csv(fh, sep="\t")
    return path
