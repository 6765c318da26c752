import io
import random

import pytest

from csvscrub import pipeline as pipeline_module
from csvscrub.duplicates import Deduplicator, row_digest
from csvscrub.errors import Cancelled, ConfigurationError, ParseError, SourceUnavailable
from csvscrub.export import records_to_frame, write_csv
from csvscrub.options import ParseOptions
from csvscrub.parser import RecordParser
from csvscrub.pipeline import CancelToken, Pipeline, PipelineState, process_csv


@pytest.fixture
def scenario_a(tmp_path):
    """Three rows: one complete, one with an empty field, one duplicate."""
    path = tmp_path / "a.csv"
    path.write_text("a,b\n1,2\n1,\n1,2\n", encoding="utf-8")
    return path


# -------------------------------------------------------------------
# Scenarios
# -------------------------------------------------------------------


def test_scenario_a_clean_then_dedupe(scenario_a):
    result = process_csv(scenario_a, materialize=True)
    assert result.ok
    assert result.stats.total_records == 3
    assert result.stats.complete_records == 2
    assert result.stats.cleaned_records == 1
    assert result.stats.optimization_gain_percent == pytest.approx(66.67, abs=0.01)
    assert result.records == [{"a": "1", "b": "2"}]
    assert result.columns == ["a", "b"]


@pytest.mark.parametrize("text", ["", "a,b\n", "a,b\n\n\n"])
def test_scenario_b_empty_input(text):
    result = process_csv(io.StringIO(text))
    assert result.ok
    assert result.is_empty
    assert result.stats.total_records == 0
    assert result.stats.cleaned_records == 0
    assert result.stats.optimization_gain_percent == 0


def test_scenario_c_distinct_complete_records():
    n = 25
    text = "id,val\n" + "".join(f"{i},v{i}\n" for i in range(n))
    result = process_csv(io.StringIO(text), materialize=True)
    assert result.stats.cleaned_records == n
    assert result.stats.optimization_gain_percent == 0
    assert [r["id"] for r in result.records] == [str(i) for i in range(n)]


def test_scenario_d_malformed_row_lenient():
    result = process_csv(io.StringIO("a,b\n1,2\n3,4,5\n6,7\n"))
    assert result.state is PipelineState.DONE
    assert result.error is None
    # malformed rows are not part of total_records
    assert result.stats.total_records == 2
    assert result.stats.malformed_rows == 1
    assert [e.row for e in result.row_errors] == [2]


def test_scenario_e_malformed_row_strict():
    result = process_csv(io.StringIO("a,b\n1,2\n3,4,5\n6,7\n"), {"strictParsing": True})
    assert result.state is PipelineState.FAILED
    assert result.stats is None
    assert isinstance(result.error, ParseError)
    assert result.error.row == 2


# -------------------------------------------------------------------
# Properties
# -------------------------------------------------------------------


@pytest.mark.parametrize("seed", range(8))
def test_counts_and_gain_stay_in_bounds(seed):
    rng = random.Random(seed)
    rows = []
    for _ in range(rng.randint(1, 60)):
        rows.append(",".join(rng.choice(["", "x", "y"]) for _ in range(3)))
    text = "c1,c2,c3\n" + "\n".join(rows) + "\n"

    stats = process_csv(io.StringIO(text)).stats
    assert 0 <= stats.cleaned_records <= stats.complete_records <= stats.total_records
    assert 0 <= stats.optimization_gain_percent <= 100


def test_output_is_deterministic():
    text = "k,v\n" + "".join(f"{i % 7},{i % 3}\n" for i in range(100))
    first = process_csv(io.StringIO(text), materialize=True).records
    second = process_csv(io.StringIO(text), materialize=True).records
    assert first == second


@pytest.mark.parametrize("use_digest", [False, True])
def test_digest_index_gives_same_result(scenario_a, use_digest):
    result = process_csv(scenario_a, use_digest=use_digest)
    assert result.stats.cleaned_records == 1


# -------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------


def test_options_mapping_and_null_markers():
    text = "a;b\n1;NULL\n1;2\n"
    result = process_csv(io.StringIO(text), {"delimiter": ";", "null_markers": ["NULL"]})
    assert result.stats.cleaned_records == 1


def test_invalid_options_raise_immediately():
    with pytest.raises(ConfigurationError):
        Pipeline(io.StringIO("a\n1\n"), {"delimiter": "ab"})


def test_required_columns():
    text = "id,address2\n1,\n2,Apt 4\n"
    result = process_csv(io.StringIO(text), required=["id"])
    assert result.stats.cleaned_records == 2


def test_unknown_required_column_fails_the_run():
    result = process_csv(io.StringIO("id,name\n1,a\n2,b\n"), required=["idd"])
    assert result.state is PipelineState.FAILED
    assert isinstance(result.error, ConfigurationError)
    assert "idd" in str(result.error)
    assert result.stats is None


def test_required_column_check_skipped_for_empty_document():
    result = process_csv(io.StringIO(""), required=["id"])
    assert result.ok
    assert result.is_empty


def test_no_header_option():
    result = process_csv(io.StringIO("1,2\n1,2\n"), ParseOptions(has_header=False), materialize=True)
    assert result.columns == ["Column_1", "Column_2"]
    assert result.stats.total_records == 2
    assert result.stats.cleaned_records == 1


def test_duplicate_report(scenario_a):
    result = process_csv(scenario_a, track_groups=True)
    assert result.duplicate_report == [(row_digest({"a": "1", "b": "2"}), 2)]


# -------------------------------------------------------------------
# Failures
# -------------------------------------------------------------------


def test_missing_source(tmp_path):
    result = process_csv(tmp_path / "missing.csv")
    assert result.state is PipelineState.FAILED
    assert isinstance(result.error, SourceUnavailable)
    assert result.stats is None


def test_no_source():
    result = process_csv(None)
    assert isinstance(result.error, SourceUnavailable)


def test_bad_header_fails():
    result = process_csv(io.StringIO("a,a\n1,2\n"))
    assert result.state is PipelineState.FAILED
    assert isinstance(result.error, ParseError)
    assert result.error.row == 0


def test_unexpected_errors_propagate():
    def boom(event):
        raise KeyError("progress consumer broke")

    pipeline = Pipeline(io.StringIO("a\n1\n"), on_progress=boom)
    with pytest.raises(KeyError):
        pipeline.run()
    assert pipeline.state is PipelineState.FAILED


# -------------------------------------------------------------------
# State machine and cancellation
# -------------------------------------------------------------------


def test_state_transitions_on_success(scenario_a):
    transitions = []
    pipeline = Pipeline(scenario_a, on_state=lambda old, new: transitions.append((old, new)))
    assert pipeline.state is PipelineState.IDLE
    pipeline.run()
    assert transitions == [
        (PipelineState.IDLE, PipelineState.PARSING),
        (PipelineState.PARSING, PipelineState.CLEANING),
        (PipelineState.CLEANING, PipelineState.DEDUPLICATING),
        (PipelineState.DEDUPLICATING, PipelineState.DONE),
    ]
    assert PipelineState.DONE.terminal


def test_pipeline_runs_once(scenario_a):
    pipeline = Pipeline(scenario_a)
    pipeline.run()
    with pytest.raises(RuntimeError):
        pipeline.run()


def test_cancel_before_start():
    token = CancelToken()
    token.cancel()
    states = []
    result = Pipeline(io.StringIO("a\n1\n"), cancel=token, on_state=lambda o, n: states.append(n)).run()
    assert result.state is PipelineState.CANCELLED
    assert states == [PipelineState.PARSING, PipelineState.CANCELLED]
    assert isinstance(result.error, Cancelled)
    assert result.stats is None


def test_cancel_mid_run_produces_no_stats(tmp_path):
    text = "n\n" + "".join(f"{i}\n" for i in range(1000))
    token = CancelToken()

    def on_progress(event):
        if event.records_processed >= 10:
            token.cancel()

    out = tmp_path / "out.csv"
    source = io.BytesIO(text.encode())
    result = Pipeline(
        source,
        ParseOptions(progress_every=5),
        on_progress=on_progress,
        cancel=token,
    ).run(materialize=True, output=out)

    assert result.state is PipelineState.CANCELLED
    assert result.stats is None
    assert result.records is None
    # the caller's stream is released but not closed
    assert not source.closed



class TrackingParser(RecordParser):
    """Keeps hold of the opened handle so tests can see it was closed."""

    def open(self):
        super().open()
        self.opened_handle = self._handle
        tracked["parser"] = self


class TrackingDeduplicator(Deduplicator):
    """Records index size around close()."""

    def close(self):
        self.size_before_close = len(self._index)
        super().close()
        self.size_after_close = len(self._index)
        tracked["deduplicator"] = self


tracked = {}


def test_cancel_releases_path_source_and_dedup_index(tmp_path, monkeypatch):
    src = tmp_path / "big.csv"
    src.write_text("n\n" + "".join(f"{i}\n" for i in range(1000)), encoding="utf-8")
    monkeypatch.setattr(pipeline_module, "RecordParser", TrackingParser)
    monkeypatch.setattr(pipeline_module, "Deduplicator", TrackingDeduplicator)
    tracked.clear()

    token = CancelToken()

    def on_progress(event):
        token.cancel()

    result = Pipeline(src, ParseOptions(progress_every=20), on_progress=on_progress, cancel=token).run()

    assert result.state is PipelineState.CANCELLED
    assert tracked["parser"].opened_handle.closed
    assert tracked["deduplicator"].size_before_close >= 20
    assert tracked["deduplicator"].size_after_close == 0


# -------------------------------------------------------------------
# Output
# -------------------------------------------------------------------


def test_output_written_in_header_order(tmp_path):
    out = tmp_path / "nested" / "out.csv"
    text = 'b,a\n2,1\n"x, y",3\n2,1\n4,\n'
    result = process_csv(io.StringIO(text), output=out)
    assert result.ok
    assert out.read_text(encoding="utf-8") == 'b,a\n2,1\n"x, y",3\n'


def test_output_for_empty_result_has_header_only(tmp_path):
    out = tmp_path / "out.csv"
    process_csv(io.StringIO("a,b\n1,\n"), output=out)
    assert out.read_text(encoding="utf-8") == "a,b\n"


def test_output_to_text_stream_uses_delimiter():
    buf = io.StringIO()
    process_csv(io.StringIO("a;b\n1;2\n"), {"delimiter": ";"}, output=buf)
    assert buf.getvalue() == "a;b\n1;2\n"


def test_write_csv_and_records_to_frame(tmp_path):
    records = [{"a": "1", "b": "2"}, {"b": "4", "a": "3"}]
    out = tmp_path / "w.csv"
    assert write_csv(records, ["a", "b"], out) == 2
    assert out.read_text(encoding="utf-8") == "a,b\n1,2\n3,4\n"

    df = records_to_frame(records, ["a", "b"])
    assert list(df.columns) == ["a", "b"]
    assert df["b"].tolist() == ["2", "4"]
    assert str(df["a"].dtype) == "string"
