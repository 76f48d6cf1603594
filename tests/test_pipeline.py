"""Tests for spliceforge.pipeline module.

BAM access is mocked at the alignment reader used by prediction and
counting, so the full pipeline runs on the small synthetic loci.
"""

from unittest.mock import MagicMock, patch

import pytest

from spliceforge.config import Config, EventConfig, PredictionConfig
from spliceforge.core.merge import merge_features
from spliceforge.errors import ConfigurationError, ResourceError
from spliceforge.pipeline import analyze_features, predict_features, run_pipeline


def _mock_reader(reads):
    reader = MagicMock()
    reader.references = ["chr1"]
    reader.fetch_reads.side_effect = lambda seqid, start=None, end=None: iter(reads)
    context = MagicMock()
    context.__enter__.return_value = reader
    return context


class TestRunPipeline:
    """Tests for run_pipeline."""

    @patch("spliceforge.core.quantify.AlignmentReader")
    def test_annotated_features(
        self, mock_count_reader, sample, two_acceptor_features, two_acceptor_reads
    ):
        """Graph, events and usage from annotated features."""
        mock_count_reader.return_value = _mock_reader(two_acceptor_reads)

        result = run_pipeline([sample], Config(), features=merge_features(two_acceptor_features))

        assert result.summary() == {
            "n_features": 8,
            "n_loci": 1,
            "n_events": 1,
            "n_variants": 2,
            "n_skipped_events": 0,
            "n_samples_failed": 0,
            "n_loci_failed": 0,
        }
        usage = result.variant_counts.matrix.layer("usage")[:, 0]
        assert usage.tolist() == pytest.approx([0.5, 0.5])

    @patch("spliceforge.core.quantify.AlignmentReader")
    @patch("spliceforge.core.predict.AlignmentReader")
    def test_predicted_features(
        self, mock_predict_reader, mock_count_reader, sample, two_acceptor_reads
    ):
        """Features predicted from reads feed the rest of the pipeline."""
        mock_predict_reader.return_value = _mock_reader(two_acceptor_reads)
        mock_count_reader.return_value = _mock_reader(two_acceptor_reads)

        result = run_pipeline([sample], Config())

        assert len(result.features.by_type("J")) == 2
        assert len(result.events) == 1
        assert result.events.variants[0].variant_type == "ALE"

    def test_no_samples(self, two_acceptor_features):
        """Without samples the graph and events are built with empty matrices."""
        result = run_pipeline([], Config(), features=merge_features(two_acceptor_features))

        assert result.feature_counts.matrix.shape == (8, 0)
        assert result.variant_counts.matrix.shape == (2, 0)
        assert len(result.events) == 1

    def test_invalid_configuration(self, sample):
        """Configuration errors abort before any sample is read."""
        with pytest.raises(ConfigurationError):
            run_pipeline([sample], Config(events=EventConfig(max_variants=0)))


class TestPartialFailure:
    """Tests for per-sample failure isolation."""

    @patch("spliceforge.core.predict.AlignmentReader")
    def test_prediction_failure_recorded(self, mock_reader, sample):
        """A sample whose BAM cannot be opened is reported, not raised."""
        mock_reader.side_effect = ResourceError("BAM index not found", sample_name="S1")

        result = predict_features([sample], Config())

        assert "S1" in result.failures
        assert len(result.features) == 0

    @patch("spliceforge.core.quantify.AlignmentReader")
    def test_counting_failure_recorded(self, mock_reader, sample, two_acceptor_features):
        """Counting failures leave the sample out of the matrix."""
        mock_reader.side_effect = ResourceError("corrupt record", sample_name="S1")

        result = analyze_features(
            [sample], Config(prediction=PredictionConfig()), merge_features(two_acceptor_features)
        )

        assert result.sample_failures.keys() == {"S1"}
        assert result.feature_counts.matrix.shape == (8, 0)
