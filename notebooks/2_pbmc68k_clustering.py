# %% [markdown]
# # Notebook 2: PBMC 68k Clustering
#
# **Fresh 68k PBMCs (donor A), 10x Genomics**
#
# **📥 Input:** filtered gene-barcode matrices (downloaded on first run)
# **📤 Output:** `outputs/pbmc68k_annotated.h5ad`, `outputs/plots/`
#
# Stages:
# 1. Loading and QC
# 2. Normalization, highly variable genes and scaling
# 3. PCA, t-SNE and clustering
# 4. Marker genes and cell type labels
# 5. Publication figure
#
# ---

# %% [markdown]
# ## 1. Setup

# %%
# Install required packages
# !pip install -q scanpy anndata leidenalg igraph matplotlib seaborn scikit-learn pandas numpy pooch

import warnings
import matplotlib
import scanpy as sc
from pathlib import Path
from IPython.display import display

from omics_eda.data_loader import (
    fetch_pbmc68k,
    fetch_reference_annotation,
    load_10x_data,
    add_reference_labels,
)
from omics_eda.qc_utils import calculate_qc_metrics, plot_qc_metrics, filter_cells_and_genes
from omics_eda.qc_violin_plots import create_true_violin_plots
from omics_eda.processing import normalize_and_scale, run_pca_tsne_clustering
from omics_eda.cell_type import compute_top_markers_per_cluster, plot_cell_type_summary
from omics_eda.annotation import (
    plot_marker_genes,
    assign_celltypes_by_cluster_scores,
    label_clusters,
    compare_with_reference,
)
from omics_eda.figures import assemble_pbmc_figure
from omics_eda.qc_filters import CELL_FILTERS, get_filter_summary

warnings.filterwarnings('ignore')
sc.settings.verbosity = 3
sc.settings.set_figure_params(dpi=80, facecolor='white')
matplotlib.rcParams['figure.figsize'] = (8, 6)

OUTPUT_DIR = Path('outputs')
PLOTS_DIR = OUTPUT_DIR / 'plots'
PLOTS_DIR.mkdir(parents=True, exist_ok=True)

print(get_filter_summary())

# %% [markdown]
# ## 2. Load Data
#
# The filtered matrices (~68k cells) are downloaded once into `data/`. The published
# per-barcode labels are attached as `bulk_labels` for comparison later.

# %%
adata = load_10x_data(fetch_pbmc68k('data'))
adata = add_reference_labels(adata, fetch_reference_annotation('data'))

# %% [markdown]
# ## 3. Quality Control

# %%
adata = calculate_qc_metrics(adata)
plot_qc_metrics(adata)
create_true_violin_plots(adata)

# %%
adata = filter_cells_and_genes(
    adata,
    min_genes=CELL_FILTERS['min_genes'],
    max_genes=CELL_FILTERS['max_genes'],
    max_mt_pct=CELL_FILTERS['max_mt_pct'],
)

# %% [markdown]
# ## 4. Normalization, PCA, t-SNE and Clustering

# %%
adata = normalize_and_scale(adata)
adata = run_pca_tsne_clustering(adata)
sc.pl.tsne(adata, color='leiden', legend_loc='on data')

# %% [markdown]
# ## 5. Marker Genes

# %%
markers_df = compute_top_markers_per_cluster(adata, groupby='leiden', plot=False)
display(markers_df.groupby('group').head(5))
plot_marker_genes(adata, groupby='leiden')

# %% [markdown]
# ## 6. Cell Type Labels
#
# Review the score-based proposal and edit the mapping below before applying it.

# %%
proposal = assign_celltypes_by_cluster_scores(adata, groupby='leiden')

CLUSTER_LABELS = dict(proposal)
# CLUSTER_LABELS['3'] = 'CD8 T'

adata = label_clusters(adata, CLUSTER_LABELS, cluster_key='leiden')
plot_cell_type_summary(adata)

table, ari = compare_with_reference(adata, key='celltype', reference_key='bulk_labels')
display(table.round(2))

# %% [markdown]
# ## 7. Publication Figure

# %%
assemble_pbmc_figure(adata, save_path=PLOTS_DIR / 'pbmc68k_tsne_figure.png')

adata.write(OUTPUT_DIR / 'pbmc68k_annotated.h5ad')
print("\n✓ Notebook complete")
