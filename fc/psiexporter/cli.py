import configparser
import os
from pathlib import Path
from typing import Optional

import structlog
import typer
from typer import Exit, Option

import fc.psiexporter.logging
from fc.psiexporter.config import parse_exporter_config
from fc.psiexporter.metrics import PressureCollector, make_registry
from fc.psiexporter.server import make_server, parse_listen_address


class PsiExporterApp(typer.Typer):
    def __init__(self, command_name):
        super().__init__(pretty_exceptions_show_locals=False)
        self.command_name = command_name

    def __call__(self, *args, **kwargs):
        try:
            return super().__call__(*args, **kwargs)
        except Exception:
            if fc.psiexporter.logging.logging_initialized():
                log = structlog.get_logger()
                log.error(
                    "unhandled-exception",
                    exc_info=True,
                    command=self.command_name,
                )
            raise


app = PsiExporterApp("fc-psi-exporter")


@app.command()
def main(
    listen_address: Optional[str] = Option(
        None,
        "--web.listen-address",
        help="Address on which to expose metrics and web interface, as "
        "host:port. IPv6 addresses go into brackets.",
    ),
    disable_avg: bool = Option(
        False,
        "--metrics.disable-avg",
        help="Disable reporting of average values.",
    ),
    silence_zeros: bool = Option(
        False,
        "--metrics.silence-zeros",
        help="Do not report zero values.",
    ),
    mountpoint: Optional[Path] = Option(
        None,
        "--cgroup.mountpoint",
        file_okay=False,
        help="Root of the cgroup2 hierarchy, defaults to /sys/fs/cgroup.",
    ),
    config_file: Optional[Path] = Option(
        None,
        "--config-file",
        dir_okay=False,
        help="INI file with defaults for the options above.",
    ),
    verbose: bool = Option(
        False,
        "--verbose",
        "-v",
        help=(
            "Show debug logging output. By default, only info and higher "
            "levels are shown."
        ),
    ),
    log_format: str = Option(
        "console",
        help="Log output format: console or json.",
    ),
):
    """Export cgroup Pressure Stall Information for Prometheus."""
    if log_format not in ("console", "json"):
        raise typer.BadParameter(
            "must be 'console' or 'json'", param_hint="--log-format"
        )

    fc.psiexporter.logging.init_logging(verbose, log_format)
    log = structlog.get_logger()

    try:
        config = parse_exporter_config(log, config_file)
    except (ValueError, configparser.Error) as e:
        log.error("startup-failed", reason="invalid config file", error=str(e))
        raise Exit(1)

    if listen_address is not None:
        config.listen_address = listen_address
    if mountpoint is not None:
        config.mountpoint = os.fspath(mountpoint)
    if disable_avg:
        config.report_avg = False
    if silence_zeros:
        config.report_zeros = False

    try:
        host, port = parse_listen_address(config.listen_address)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--web.listen-address")

    collector = PressureCollector(
        config.mountpoint, config.report_avg, config.report_zeros, log
    )
    try:
        registry = make_registry(collector)
        server = make_server(registry, host, port, log)
    except (ValueError, OSError) as e:
        log.error(
            "startup-failed",
            listen_address=config.listen_address,
            error=str(e),
        )
        raise Exit(1)

    log.info(
        "listening",
        listen_address=config.listen_address,
        mountpoint=config.mountpoint,
        report_avg=config.report_avg,
        report_zeros=config.report_zeros,
    )

    with server:
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            log.info("shutdown")
