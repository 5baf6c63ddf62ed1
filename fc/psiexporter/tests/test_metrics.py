from datetime import timedelta

import pytest
from fc.psiexporter.cgroups import PsiMeasurements
from fc.psiexporter.metrics import (
    PressureCollector,
    build_metrics,
    make_registry,
)
from fc.psiexporter.psi import PsiLine, PsiParseError, PsiRecord, PsiStats
from prometheus_client import generate_latest

AVG_NAMES = [
    "pressure_avg_10s_ratio",
    "pressure_avg_60s_ratio",
    "pressure_avg_300s_ratio",
]


def record(line, avg10=0.0, avg60=0.0, avg300=0.0, total=0):
    return PsiRecord(
        line=line,
        avg10=avg10,
        avg60=avg60,
        avg300=avg300,
        total=timedelta(microseconds=total),
    )


def samples(families):
    return {
        (s.name, s.labels["id"], s.labels["controller"], s.labels["kind"]): s.value
        for family in families
        for s in family.samples
    }


@pytest.fixture
def example():
    """The a.slice example: busy `some`, idle `full` cpu pressure."""
    return {
        "/a.slice": PsiMeasurements(
            cpu=PsiStats(
                some=record(PsiLine.SOME, 5.0, 2.0, 1.0, 500000),
                full=record(PsiLine.FULL),
            )
        )
    }


def test_build_metrics_default_policies(example):
    result = samples(build_metrics(example))

    assert result == {
        ("pressure_total_seconds", "/a.slice", "cpu", "some"): 0.5,
        ("pressure_avg_10s_ratio", "/a.slice", "cpu", "some"): 0.05,
        ("pressure_avg_60s_ratio", "/a.slice", "cpu", "some"): 0.02,
        ("pressure_avg_300s_ratio", "/a.slice", "cpu", "some"): 0.01,
        ("pressure_total_seconds", "/a.slice", "cpu", "full"): 0.0,
        ("pressure_avg_10s_ratio", "/a.slice", "cpu", "full"): 0.0,
        ("pressure_avg_60s_ratio", "/a.slice", "cpu", "full"): 0.0,
        ("pressure_avg_300s_ratio", "/a.slice", "cpu", "full"): 0.0,
    }


def test_build_metrics_family_names(example):
    families = build_metrics(example)
    assert [f.name for f in families] == ["pressure_total_seconds"] + AVG_NAMES
    assert [f.type for f in families] == ["unknown", "gauge", "gauge", "gauge"]


def test_build_metrics_silence_zeros(example):
    result = samples(build_metrics(example, report_zeros=False))

    assert result == {
        ("pressure_total_seconds", "/a.slice", "cpu", "some"): 0.5,
        ("pressure_avg_10s_ratio", "/a.slice", "cpu", "some"): 0.05,
        ("pressure_avg_60s_ratio", "/a.slice", "cpu", "some"): 0.02,
        ("pressure_avg_300s_ratio", "/a.slice", "cpu", "some"): 0.01,
    }


def test_zero_total_without_averages():
    measurements = {
        "/idle.service": PsiMeasurements(io=PsiStats(some=record(PsiLine.SOME)))
    }

    silenced = samples(build_metrics(measurements, False, False))
    assert silenced == {}

    reported = samples(build_metrics(measurements, False, True))
    assert reported == {
        ("pressure_total_seconds", "/idle.service", "io", "some"): 0.0
    }


def test_zero_suppression_is_per_gauge():
    measurements = {
        "/a.slice": PsiMeasurements(
            memory=PsiStats(
                full=record(PsiLine.FULL, avg10=0.0, avg60=0.5, total=0)
            )
        )
    }

    result = samples(build_metrics(measurements, report_zeros=False))

    assert result == {
        ("pressure_avg_60s_ratio", "/a.slice", "memory", "full"): 0.005,
    }


@pytest.mark.parametrize("report_zeros", [True, False])
def test_disable_averages(example, report_zeros):
    families = build_metrics(
        example, report_avg=False, report_zeros=report_zeros
    )

    assert [f.name for f in families] == ["pressure_total_seconds"]
    assert not any(
        name.startswith("pressure_avg_") for name, *_ in samples(families)
    )


def test_missing_kind_is_not_reported():
    measurements = {
        "/a.slice": PsiMeasurements(
            cpu=PsiStats(full=record(PsiLine.FULL, 1.0, 1.0, 1.0, 2000000))
        )
    }

    result = samples(build_metrics(measurements))

    assert {kind for *_, kind in result} == {"full"}
    assert result[("pressure_total_seconds", "/a.slice", "cpu", "full")] == 2.0
    assert result[("pressure_avg_10s_ratio", "/a.slice", "cpu", "full")] == 0.01


def test_empty_measurements_report_nothing():
    assert samples(build_metrics({"/": PsiMeasurements()})) == {}


def test_build_metrics_returns_fresh_families(example):
    first = build_metrics(example)
    second = build_metrics(example)
    assert first[0] is not second[0]
    assert samples(first) == samples(second)


def test_build_metrics_order():
    busy = PsiStats(
        some=record(PsiLine.SOME, total=1), full=record(PsiLine.FULL, total=1)
    )
    measurements = {
        "/b.slice": PsiMeasurements(cpu=busy, memory=busy, io=busy),
        "/a.slice": PsiMeasurements(io=busy, cpu=busy),
    }

    total = build_metrics(measurements, report_avg=False)[0]

    assert [
        (s.labels["id"], s.labels["controller"], s.labels["kind"])
        for s in total.samples
    ] == [
        ("/a.slice", "cpu", "some"),
        ("/a.slice", "cpu", "full"),
        ("/a.slice", "io", "some"),
        ("/a.slice", "io", "full"),
        ("/b.slice", "cpu", "some"),
        ("/b.slice", "cpu", "full"),
        ("/b.slice", "memory", "some"),
        ("/b.slice", "memory", "full"),
        ("/b.slice", "io", "some"),
        ("/b.slice", "io", "full"),
    ]


def test_collector_end_to_end(logger, tmp_path):
    service = tmp_path / "a.slice"
    service.mkdir()
    (service / "cpu.pressure").write_text(
        "some avg10=5.00 avg60=2.00 avg300=1.00 total=500000\n"
        "full avg10=0.00 avg60=0.00 avg300=0.00 total=0\n"
    )
    registry = make_registry(
        PressureCollector(str(tmp_path), True, True, logger)
    )

    labels = {"id": "/a.slice", "controller": "cpu", "kind": "some"}
    assert registry.get_sample_value("pressure_total_seconds", labels) == 0.5
    assert registry.get_sample_value("pressure_avg_10s_ratio", labels) == 0.05
    full = dict(labels, kind="full")
    assert registry.get_sample_value("pressure_avg_300s_ratio", full) == 0.0

    output = generate_latest(registry).decode()
    assert "# TYPE pressure_total_seconds untyped" in output
    assert (
        'pressure_total_seconds{controller="cpu",id="/a.slice",kind="some"} 0.5'
        in output
    )


def test_collector_reflects_changes_between_scrapes(logger, tmp_path):
    registry = make_registry(
        PressureCollector(str(tmp_path), True, True, logger)
    )
    labels = {"id": "/new.service", "controller": "io", "kind": "some"}
    assert registry.get_sample_value("pressure_total_seconds", labels) is None

    (tmp_path / "new.service").mkdir()
    (tmp_path / "new.service" / "io.pressure").write_text(
        "some avg10=0.00 avg60=0.00 avg300=0.00 total=3000000\n"
    )
    assert registry.get_sample_value("pressure_total_seconds", labels) == 3.0


def test_collector_logs_and_raises_parse_errors(log, logger, tmp_path):
    (tmp_path / "cpu.pressure").write_text("some avg10=oops\n")
    collector = PressureCollector(str(tmp_path), True, True, logger)

    with pytest.raises(PsiParseError):
        collector.collect()
    assert log.has("psi-parse-failed", path=str(tmp_path / "cpu.pressure"))


def test_registration_conflict_fails(logger, tmp_path):
    registry = make_registry(
        PressureCollector(str(tmp_path), True, True, logger)
    )
    with pytest.raises(ValueError):
        registry.register(PressureCollector(str(tmp_path), True, True, logger))


def test_describe_follows_report_avg(logger, tmp_path):
    collector = PressureCollector(str(tmp_path), False, True, logger)
    assert [f.name for f in collector.describe()] == ["pressure_total_seconds"]
