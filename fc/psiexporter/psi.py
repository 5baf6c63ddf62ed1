"""Parser for the kernel's Pressure Stall Information text format.

A pressure file holds one line per kind:

    some avg10=0.00 avg60=0.00 avg300=0.00 total=0
    full avg10=0.00 avg60=0.00 avg300=0.00 total=0

The averages are percentages, total is the accumulated stall time in
microseconds.
"""

import enum
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

AVERAGE_PATTERN = re.compile(r"[0-9]+(\.[0-9]+)?")
TOTAL_PATTERN = re.compile(r"[0-9]+")

FIELDS = ("avg10", "avg60", "avg300", "total")


class PsiLine(enum.Enum):
    SOME = "some"
    FULL = "full"


class PsiParseError(ValueError):
    # Set by the caller once the source file is known.
    path = None

    def __init__(self, line, reason):
        super().__init__(f"{reason}: {line!r}")
        self.line = line
        self.reason = reason


@dataclass
class PsiRecord:
    line: PsiLine
    avg10: float
    avg60: float
    avg300: float
    total: timedelta

    @property
    def total_seconds(self) -> float:
        return self.total / timedelta(seconds=1)


@dataclass
class PsiStats:
    """Both kinds of a single pressure file. A kind may be missing."""

    some: Optional[PsiRecord] = None
    full: Optional[PsiRecord] = None

    def kinds(self):
        yield PsiLine.SOME, self.some
        yield PsiLine.FULL, self.full


def parse_line(line: str) -> PsiRecord:
    tokens = line.split()
    if not tokens:
        raise PsiParseError(line, "empty line")

    kind, *pairs = tokens
    try:
        psi_line = PsiLine(kind)
    except ValueError:
        raise PsiParseError(line, f"unknown kind {kind!r}") from None

    values = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise PsiParseError(line, f"expected key=value, got {pair!r}")
        if key not in FIELDS:
            raise PsiParseError(line, f"unknown key {key!r}")
        if key in values:
            raise PsiParseError(line, f"duplicate key {key!r}")
        pattern = TOTAL_PATTERN if key == "total" else AVERAGE_PATTERN
        if not pattern.fullmatch(value):
            raise PsiParseError(line, f"invalid value for {key}: {value!r}")
        values[key] = value

    missing = [f for f in FIELDS if f not in values]
    if missing:
        raise PsiParseError(line, "missing " + ", ".join(missing))

    return PsiRecord(
        line=psi_line,
        avg10=float(values["avg10"]),
        avg60=float(values["avg60"]),
        avg300=float(values["avg300"]),
        total=timedelta(microseconds=int(values["total"])),
    )


def parse_pressure_file(text: str) -> PsiStats:
    """Parses the complete contents of a `*.pressure` file.

    Blank lines are ignored. If a kind shows up twice, the last one wins.
    Raises PsiParseError for any line that does not follow the format.
    """
    stats = PsiStats()
    for line in text.splitlines():
        if not line.strip():
            continue
        record = parse_line(line)
        if record.line is PsiLine.SOME:
            stats.some = record
        else:
            stats.full = record
    return stats
