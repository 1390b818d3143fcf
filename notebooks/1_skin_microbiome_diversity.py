# %% [markdown]
# # Notebook 1: Skin Microbiome Diversity
#
# **Skin microbiome exploratory analysis**
#
# **📥 Input:** curated sample metadata + species relative abundance tables
# **📤 Output:** `outputs/microbiome/` (TSV tables and figures)
#
# Stages:
# 1. Cohort query (skin samples of one study)
# 2. Relative abundance, taxonomy and reconstructed counts
# 3. Alpha diversity
# 4. Beta diversity (Bray-Curtis, PCoA, PERMANOVA)
# 5. ANCOM-BC differential abundance
#
# ---

# %% [markdown]
# ## 1. Setup
#
# Install required packages and set up the environment.

# %%
# Install required packages
# !pip install -q scikit-bio pandas numpy scipy matplotlib seaborn statsmodels pooch

import warnings
import matplotlib
import matplotlib.pyplot as plt
from pathlib import Path
from IPython.display import display

from omics_eda.curated_data import (
    fetch_data_file,
    load_sample_metadata,
    query_samples,
    load_relative_abundance,
    align_samples,
    relative_to_counts,
    agglomerate_by_rank,
    export_tables,
    check_taxonomy_table,
    check_roundtrip,
)
from omics_eda.diversity import (
    calculate_alpha_diversity,
    compare_alpha_diversity,
    plot_alpha_diversity,
    calculate_beta_diversity,
    run_pcoa,
    run_permanova,
    plot_pcoa,
)
from omics_eda.differential_abundance import (
    filter_taxa_by_prevalence,
    run_differential_abundance,
    summarize_da_results,
    plot_da_waterfall,
)
from omics_eda.figures import assemble_microbiome_figure
from omics_eda.microbiome_params import DA_PARAMS, GROUPING, SKIN_QUERY, get_params_summary

warnings.filterwarnings('ignore')
matplotlib.rcParams['figure.figsize'] = (8, 6)

# %% [markdown]
# ## 2. Parameter Configuration
#
# Point these at a local export of the curatedMetagenomicData tables, or at URLs.

# %%
METADATA_SOURCE = 'data/sampleMetadata.tsv'
ABUNDANCE_SOURCE = 'data/ChngKR_2016.relative_abundance.tsv'
OUTPUT_DIR = Path('outputs/microbiome')
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

GROUP_COL = GROUPING['group_col']
REFERENCE = GROUPING['reference']

print(get_params_summary())

# %% [markdown]
# ## 3. Cohort Query

# %%
metadata = load_sample_metadata(fetch_data_file(METADATA_SOURCE))
metadata = query_samples(
    metadata,
    body_site=SKIN_QUERY['body_site'],
    study_name=SKIN_QUERY['study_name'],
)
display(metadata[[GROUP_COL]].value_counts())

# %% [markdown]
# ## 4. Abundance Tables
#
# Species-level relative abundances are converted back to approximate read counts
# with each sample's sequencing depth.

# %%
relab, taxonomy = load_relative_abundance(fetch_data_file(ABUNDANCE_SOURCE))
metadata, relab = align_samples(metadata, relab)
relab = relab.loc[relab.sum(axis=1) > 0]
taxonomy = taxonomy.loc[relab.index]
counts = relative_to_counts(relab, metadata)

check_taxonomy_table(taxonomy)
paths = export_tables(OUTPUT_DIR, metadata, relab, counts, taxonomy)
check_roundtrip(counts, paths['counts'])

display(taxonomy.head())

# %% [markdown]
# ## 5. Alpha Diversity

# %%
alpha_df = calculate_alpha_diversity(counts)
alpha_tests = compare_alpha_diversity(alpha_df, metadata, GROUP_COL)
display(alpha_tests)
plot_alpha_diversity(alpha_df, metadata, GROUP_COL)

# %% [markdown]
# ## 6. Beta Diversity
#
# Bray-Curtis dissimilarities on relative abundance, ordinated with PCoA and tested
# with PERMANOVA.

# %%
dm = calculate_beta_diversity(relab)
coords, proportions = run_pcoa(dm)
permanova_result = run_permanova(dm, metadata, GROUP_COL)
plot_pcoa(coords, proportions, metadata, GROUP_COL)

# %% [markdown]
# ## 7. Differential Abundance (ANCOM-BC)

# %%
genus_counts = agglomerate_by_rank(counts, taxonomy, DA_PARAMS['rank'])
genus_counts = filter_taxa_by_prevalence(genus_counts)

da_results = run_differential_abundance(genus_counts, metadata, GROUP_COL, REFERENCE)
if da_results is not None:
    print(summarize_da_results(da_results))
    display(da_results[da_results['significant']])
    for covariate in da_results['covariate'].unique():
        plot_da_waterfall(da_results, covariate)

# %% [markdown]
# ## 8. Summary Figure

# %%
fig = assemble_microbiome_figure(
    alpha_df, coords, proportions, da_results, metadata, GROUP_COL,
    save_path=OUTPUT_DIR / 'skin_microbiome_figure.png',
)
plt.close(fig)

print("\n✓ Notebook complete")
