#!/usr/bin/env python3
"""
Skin microbiome diversity and differential abundance

This script performs:
1. Curated sample metadata query (body site / study / disease)
2. Species relative abundance loading and count reconstruction
3. Tab-separated exports of the cohort tables
4. Alpha diversity, Bray-Curtis PCoA and PERMANOVA
5. ANCOM-BC differential abundance and the summary figure

uv run python skin_microbiome_analysis.py --metadata sampleMetadata.tsv --abundance relative_abundance.tsv
"""

import warnings
import argparse
import matplotlib
from pathlib import Path

from omics_eda.curated_data import (
    fetch_data_file,
    load_sample_metadata,
    query_samples,
    load_relative_abundance,
    align_samples,
    relative_to_counts,
    agglomerate_by_rank,
    export_tables,
    write_tsv,
    check_cohort_size,
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

# Suppress warnings
warnings.filterwarnings("ignore")


def main(
    metadata_source,
    abundance_source,
    out_dir_path="results",
    data_dir="data",
    study_name=None,
    group_col=None,
    reference=None,
    expected_samples=None,
    da_method="ancombc",
):
    """Main analysis pipeline

    Args:
        metadata_source: Path or URL of the curated sample metadata table.
        abundance_source: Path or URL of the species relative abundance table.
        out_dir_path: Directory for tables and figures.
        data_dir: Download cache directory.
        study_name: Study to keep (default from SKIN_QUERY).
        group_col: Metadata column to compare (default from GROUPING).
        reference: Reference level of group_col (default from GROUPING).
        expected_samples: Fail unless the cohort has exactly this many samples.
        da_method: "ancombc" or "wilcoxon".
    """
    print("Starting skin microbiome analysis pipeline...")

    out_dir = Path(out_dir_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"Results will be saved to: {out_dir.absolute()}")

    matplotlib.use("Agg")

    print("\n" + get_params_summary() + "\n")

    group_col = group_col or GROUPING["group_col"]
    reference = reference or GROUPING["reference"]

    # Step 1: Select the cohort
    metadata = load_sample_metadata(fetch_data_file(metadata_source, data_dir))
    metadata = query_samples(
        metadata,
        body_site=SKIN_QUERY["body_site"],
        study_name=study_name or SKIN_QUERY["study_name"],
        disease=SKIN_QUERY["disease"],
        study_condition=SKIN_QUERY["study_condition"],
    )

    # Step 2: Abundance tables
    relab, taxonomy = load_relative_abundance(fetch_data_file(abundance_source, data_dir))
    metadata, relab = align_samples(metadata, relab)
    relab = relab.loc[relab.sum(axis=1) > 0]
    taxonomy = taxonomy.loc[relab.index]
    counts = relative_to_counts(relab, metadata)

    if expected_samples is not None:
        check_cohort_size(metadata, expected_samples)
    check_taxonomy_table(taxonomy)

    # Step 3: Export
    paths = export_tables(out_dir, metadata, relab, counts, taxonomy)
    check_roundtrip(counts, paths["counts"])

    # Step 4: Alpha diversity
    alpha_df = calculate_alpha_diversity(counts)
    write_tsv(alpha_df, out_dir / "alpha_diversity.tsv")
    alpha_tests = compare_alpha_diversity(alpha_df, metadata, group_col)
    alpha_tests.to_csv(out_dir / "alpha_diversity_tests.tsv", sep="\t", index=False)
    plot_alpha_diversity(alpha_df, metadata, group_col, save_dir=out_dir)

    # Step 5: Beta diversity
    dm = calculate_beta_diversity(relab)
    coords, proportions = run_pcoa(dm)
    write_tsv(coords, out_dir / "pcoa_coordinates.tsv")
    permanova_result = run_permanova(dm, metadata, group_col)
    plot_pcoa(coords, proportions, metadata, group_col, save_dir=out_dir)

    # Step 6: Differential abundance
    rank_counts = agglomerate_by_rank(counts, taxonomy, DA_PARAMS["rank"])
    rank_counts = filter_taxa_by_prevalence(rank_counts)
    da_results = run_differential_abundance(
        rank_counts, metadata, group_col, reference, method=da_method
    )

    if da_results is not None:
        da_results.to_csv(out_dir / "differential_abundance.tsv", sep="\t", index=False)
        print(f"  Saved: {out_dir}/differential_abundance.tsv")
        print(summarize_da_results(da_results))
        for covariate in da_results["covariate"].unique():
            plot_da_waterfall(da_results, covariate, save_dir=out_dir)

    # Step 7: Summary figure
    assemble_microbiome_figure(
        alpha_df,
        coords,
        proportions,
        da_results,
        metadata,
        group_col,
        save_path=out_dir / "skin_microbiome_figure.png",
    )

    print("Analysis complete!")
    return {
        "metadata": metadata,
        "counts": counts,
        "alpha": alpha_df,
        "alpha_tests": alpha_tests,
        "permanova": permanova_result,
        "da_results": da_results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Skin microbiome diversity and ANCOM-BC")
    parser.add_argument("--metadata", required=True, help="Sample metadata table (path or URL)")
    parser.add_argument("--abundance", required=True, help="Species relative abundance table (path or URL)")
    parser.add_argument("--out-dir", default="results", help="Output directory (default: 'results')")
    parser.add_argument("--data-dir", default="data", help="Download cache directory (default: 'data')")
    parser.add_argument("--study", default=None, help="Study name to keep")
    parser.add_argument("--group-col", default=None, help="Metadata column to compare")
    parser.add_argument("--reference", default=None, help="Reference level of the group column")
    parser.add_argument("--expected-samples", type=int, default=None, help="Expected cohort size")
    parser.add_argument(
        "--da-method",
        choices=["ancombc", "wilcoxon"],
        default="ancombc",
        help="Differential abundance method",
    )
    args = parser.parse_args()

    results = main(
        args.metadata,
        args.abundance,
        out_dir_path=args.out_dir,
        data_dir=args.data_dir,
        study_name=args.study,
        group_col=args.group_col,
        reference=args.reference,
        expected_samples=args.expected_samples,
        da_method=args.da_method,
    )
