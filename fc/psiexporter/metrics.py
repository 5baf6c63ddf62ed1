"""Turn collected pressure measurements into Prometheus metric families."""

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily, Metric

from fc.psiexporter.cgroups import (
    PressureFiles,
    PsiMeasurements,
    collect_measurements,
)
from fc.psiexporter.psi import PsiParseError

LABELS = ["id", "controller", "kind"]

TOTAL = ("pressure_total_seconds", "Total time spent under pressure")

AVERAGES = [
    (
        "avg10",
        "pressure_avg_10s_ratio",
        "Ratio of time spent under pressure in the last 10s at time of "
        "measurement",
    ),
    (
        "avg60",
        "pressure_avg_60s_ratio",
        "Ratio of time spent under pressure in the last 60s at time of "
        "measurement",
    ),
    (
        "avg300",
        "pressure_avg_300s_ratio",
        "Ratio of time spent under pressure in the last 300s at time of "
        "measurement",
    ),
]


def _families(report_avg):
    # Untyped: the counter type would rename the samples to *_total.
    total = Metric(*TOTAL, "unknown")
    averages = {}
    if report_avg:
        for field, name, documentation in AVERAGES:
            averages[field] = GaugeMetricFamily(
                name, documentation, labels=LABELS
            )
    return total, averages


def build_metrics(
    measurements: dict[str, PsiMeasurements],
    report_avg: bool = True,
    report_zeros: bool = True,
):
    """Builds a fresh set of metric families from `measurements`.

    Kinds without data are left out. With `report_zeros` switched off,
    every single sample that would be 0 is left out as well.
    """
    total, averages = _families(report_avg)

    for service in sorted(measurements):
        for controller, stats in measurements[service].controllers():
            for kind, record in stats.kinds():
                if record is None:
                    continue
                labels = [service, controller, kind.value]

                if report_zeros or record.total_seconds > 0:
                    total.add_sample(
                        total.name,
                        dict(zip(LABELS, labels)),
                        record.total_seconds,
                    )

                for field, family in averages.items():
                    value = getattr(record, field)
                    if report_zeros or value > 0:
                        family.add_metric(labels, value / 100.0)

    return [total, *averages.values()]


class PressureCollector:
    """Collects cgroup pressure on every scrape.

    Nothing is cached between two calls to `collect()`, each scrape walks
    the cgroup hierarchy and builds its own metric families.
    """

    def __init__(self, mountpoint, report_avg, report_zeros, log):
        self.mountpoint = mountpoint
        self.report_avg = report_avg
        self.report_zeros = report_zeros
        self.log = log

    def describe(self):
        total, averages = _families(self.report_avg)
        return [total, *averages.values()]

    def collect(self):
        try:
            measurements = collect_measurements(
                self.log, PressureFiles(self.mountpoint, self.log)
            )
        except PsiParseError as e:
            self.log.error(
                "psi-parse-failed",
                path=e.path,
                line=e.line,
                reason=e.reason,
            )
            raise
        self.log.debug("pressure-collected", services=len(measurements))
        return build_metrics(measurements, self.report_avg, self.report_zeros)


def make_registry(collector):
    registry = CollectorRegistry()
    registry.register(collector)
    return registry
