import pytest

from omics_eda import microbiome_params, qc_filters


def test_default_parameters_are_valid():
    assert qc_filters.validate_filters()
    assert microbiome_params.validate_params()


def test_filter_summary_mentions_thresholds():
    summary = qc_filters.get_filter_summary()
    assert "200 - 2500" in summary
    assert "cell_ranger" in summary


def test_params_summary_mentions_query():
    summary = microbiome_params.get_params_summary()
    assert "body_site=skin" in summary
    assert "holm" in summary


def test_invalid_filters_are_reported(monkeypatch):
    monkeypatch.setitem(qc_filters.CELL_FILTERS, "min_genes", 5000)
    monkeypatch.setitem(qc_filters.CLUSTERING_PARAMS, "method", "louvain")
    with pytest.raises(ValueError) as excinfo:
        qc_filters.validate_filters()
    assert "min_genes" in str(excinfo.value)
    assert "clustering method" in str(excinfo.value)


def test_invalid_microbiome_params(monkeypatch):
    monkeypatch.setitem(microbiome_params.DA_PARAMS, "rank", "strain")
    monkeypatch.setitem(microbiome_params.DA_PARAMS, "min_prevalence", 1.5)
    with pytest.raises(ValueError) as excinfo:
        microbiome_params.validate_params()
    assert "DA rank" in str(excinfo.value)
    assert "min_prevalence" in str(excinfo.value)
