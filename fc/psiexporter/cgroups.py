"""Find pressure files in the cgroup hierarchy and collect their contents
per service.
"""

import os
from dataclasses import dataclass, field
from typing import NamedTuple

from fc.psiexporter.psi import PsiParseError, PsiStats, parse_pressure_file

MOUNTPOINT = "/sys/fs/cgroup"
PRESSURE_SUFFIX = ".pressure"

# Delegation boundaries, not services.
IGNORED_SUFFIXES = (".mount", ".socket", ".scope")

CONTROLLERS = ("cpu", "memory", "io")


class PressureFile(NamedTuple):
    service: str
    controller: str
    path: str


@dataclass
class PsiMeasurements:
    cpu: PsiStats = field(default_factory=PsiStats)
    memory: PsiStats = field(default_factory=PsiStats)
    io: PsiStats = field(default_factory=PsiStats)

    def controllers(self):
        for controller in CONTROLLERS:
            yield controller, getattr(self, controller)


def _is_text(name):
    # os.walk hands out undecodable bytes as surrogate escapes.
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def is_interesting(name):
    return _is_text(name) and not name.endswith(IGNORED_SUFFIXES)


def is_pressure(name):
    return _is_text(name) and name.endswith(PRESSURE_SUFFIX)


def service_id(mountpoint, directory):
    relative = os.path.relpath(directory, mountpoint)
    if relative == os.curdir:
        return "/"
    return "/" + relative


class PressureFiles:
    """All pressure files below `mountpoint`.

    Every iteration walks the hierarchy again, so the result reflects
    cgroups created or removed in the meantime. Subtrees whose name has one
    of the IGNORED_SUFFIXES are not entered at all.
    """

    def __init__(self, mountpoint, log):
        self.mountpoint = mountpoint
        self.log = log

    def _walk_error(self, exc):
        self.log.debug(
            "cgroup-walk-error", path=exc.filename, error=exc.strerror
        )

    def __iter__(self):
        for root, dirs, files in os.walk(
            self.mountpoint, onerror=self._walk_error
        ):
            dirs[:] = sorted(d for d in dirs if is_interesting(d))
            service = service_id(self.mountpoint, root)
            for name in sorted(files):
                if not (is_interesting(name) and is_pressure(name)):
                    continue
                yield PressureFile(
                    service=service,
                    controller=name[: -len(PRESSURE_SUFFIX)],
                    path=os.path.join(root, name),
                )


def collect_measurements(log, pressure_files) -> dict[str, PsiMeasurements]:
    """Reads and parses pressure files, keyed by service id.

    Files which cannot be read are skipped: cgroups come and go while we
    walk the tree. Parse errors are not caught.
    """
    services: dict[str, PsiMeasurements] = {}

    for pressure_file in pressure_files:
        try:
            with open(pressure_file.path) as f:
                content = f.read()
        except OSError as e:
            log.debug(
                "pressure-file-unreadable",
                path=pressure_file.path,
                error=str(e),
            )
            continue

        try:
            stats = parse_pressure_file(content)
        except PsiParseError as e:
            e.path = pressure_file.path
            raise

        measurements = services.setdefault(
            pressure_file.service, PsiMeasurements()
        )
        if pressure_file.controller not in CONTROLLERS:
            log.debug(
                "pressure-file-unknown-controller",
                path=pressure_file.path,
                controller=pressure_file.controller,
            )
            continue
        setattr(measurements, pressure_file.controller, stats)

    return services
