import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fc.psiexporter.cgroups import MOUNTPOINT

SECTION = "psi-exporter"

DEFAULT_LISTEN_ADDRESS = "[::1]:12345"


@dataclass
class ExporterConfig:
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    report_avg: bool = True
    report_zeros: bool = True
    mountpoint: str = MOUNTPOINT


def parse_exporter_config(log, config_file: Optional[Path]) -> ExporterConfig:
    """Reads the [psi-exporter] section of an INI-style config file.

    Everything not given in the file keeps its default. Invalid boolean
    values raise ValueError.
    """
    config = configparser.ConfigParser()
    if config_file:
        if config_file.is_file():
            log.debug(
                "parse-exporter-config",
                config_file=config_file,
            )
            config.read(config_file)
        else:
            log.warning(
                "parse-exporter-config-not-found",
                config_file=config_file,
            )

    defaults = ExporterConfig()
    if not config.has_section(SECTION):
        return defaults

    section = config[SECTION]
    return ExporterConfig(
        listen_address=section.get("listen-address", defaults.listen_address),
        report_avg=section.getboolean("report-avg", defaults.report_avg),
        report_zeros=section.getboolean("report-zeros", defaults.report_zeros),
        mountpoint=section.get("mountpoint", defaults.mountpoint),
    )
