from newswatch.aggregate import aggregate, collect_hits, merge_seconds
from newswatch.schemas import ClassificationResult, SegmentResult

LABELS = {"0": "Anderson Cooper", "1": "Tucker Carlson"}


def _segment(index, duration, detections, labels=LABELS):
    return SegmentResult(
        index=index,
        duration=duration,
        results=ClassificationResult(
            classification_progress=100,
            label_dict=labels,
            detections=detections,
        ),
    )


def test_merge_tolerates_small_gaps():
    assert merge_seconds([10, 11, 13, 20], gap=3) == [(10, 13), (20, 20)]


def test_merge_edge_cases():
    assert merge_seconds([]) == []
    assert merge_seconds([7]) == [(7, 7)]
    assert merge_seconds([5, 1, 2, 9], gap=3) == [(1, 5), (9, 9)]
    assert merge_seconds([1, 5], gap=3) == [(1, 1), (5, 5)]


def test_cursor_maps_local_seconds_to_job_time():
    segments = [
        _segment(0, 1200, {}),
        _segment(1, 1200, {}),
        _segment(2, 600, {"5": {"0": [{"score": 99.0}]}}),
    ]
    hits = collect_hits(segments)
    assert hits["Anderson Cooper"] == {2405}
    assert hits["Tucker Carlson"] == set()


def test_segments_are_walked_in_index_order():
    segments = [
        _segment(1, 600, {"0": {"1": [{"score": 95}]}}),
        _segment(0, 1200, {"10": {"1": [{"score": 95}]}}),
    ]
    assert aggregate(segments)["Tucker Carlson"] == [(10, 10), (1200, 1200)]


def test_only_best_candidate_above_threshold_counts():
    segments = [
        _segment(
            0,
            1200,
            {
                "1": {"0": [{"score": 40}, {"score": 91}]},
                "2": {"0": [{"score": 90}]},
                "3": {"1": [{"score": 89.9}, {"score": 12}]},
            },
        )
    ]
    result = aggregate(segments)
    assert result == {"Anderson Cooper": [(1, 1)], "Tucker Carlson": []}


def test_labels_without_hits_are_reported_empty():
    labels = {"0": "Anderson Cooper", "1": "Tucker Carlson", "2": "Rachel Maddow"}
    segments = [
        _segment(0, 1200, {"100": {"2": [{"score": 97}]}}, labels=labels),
        _segment(1, 1200, {"3": {"2": [{"score": 98}]}, "5": {"2": [{"score": 96}]}}, labels=labels),
    ]
    result = aggregate(segments)
    assert result["Anderson Cooper"] == []
    assert result["Tucker Carlson"] == []
    assert result["Rachel Maddow"] == [(100, 100), (1203, 1205)]


def test_fractional_durations_floor_to_whole_seconds():
    segments = [
        _segment(0, 1200.48, {}),
        _segment(1, 1199.9, {"0": {"0": [{"score": 95}]}, "2": {"0": [{"score": 95}]}}),
    ]
    assert aggregate(segments)["Anderson Cooper"] == [(1200, 1202)]


def test_unknown_label_ids_fall_back_to_the_id():
    segments = [_segment(0, 1200, {"4": {"9": [{"score": 93}]}})]
    assert aggregate(segments)["9"] == [(4, 4)]
