"""HTTP endpoint answering scrapes with the current pressure snapshot."""

import socket
from wsgiref.simple_server import ServerHandler, WSGIRequestHandler
from wsgiref.simple_server import make_server as make_wsgi_server

from prometheus_client import make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer


def parse_listen_address(address):
    """Splits `host:port` or `[v6-address]:port` into host and port."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got {address!r}")
    if host.startswith("["):
        if not host.endswith("]"):
            raise ValueError(f"unbalanced brackets in {address!r}")
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"IPv6 addresses must be bracketed: {address!r}")
    if not host:
        raise ValueError(f"missing host in {address!r}")
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"invalid port in {address!r}")
    return host, int(port)


def _address_family(host, port):
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    family, _, _, _, sockaddr = next(iter(infos))
    return family, sockaddr[0]


class ScrapeHandler(ServerHandler):
    """Runs the metrics app for one request and logs through structlog."""

    def __init__(self, *args, log, **kwargs):
        super().__init__(*args, **kwargs)
        self.log = log

    def finish_response(self):
        # wsgiref drops client disconnects silently after this returns.
        try:
            super().finish_response()
        except OSError:
            self.log.warning(
                "http-response-failed",
                client=self.environ.get("REMOTE_ADDR"),
                exc_info=True,
            )
            raise

    def log_exception(self, exc_info):
        self.log.error(
            "http-request-failed",
            client=self.environ.get("REMOTE_ADDR"),
            path=self.environ.get("PATH_INFO"),
            exc_info=exc_info,
        )


def make_server(registry, host, port, log):
    """Binds a threaded HTTP server exposing `registry` on every path.

    Raises OSError if the address cannot be resolved or bound.
    """
    family, host = _address_family(host, port)

    class RequestHandler(WSGIRequestHandler):
        def handle(self):
            self.raw_requestline = self.rfile.readline(65537)
            if len(self.raw_requestline) > 65536:
                self.requestline = ""
                self.request_version = ""
                self.command = ""
                self.send_error(414)
                return
            if not self.parse_request():
                return

            handler = ScrapeHandler(
                self.rfile,
                self.wfile,
                self.get_stderr(),
                self.get_environ(),
                log=log,
            )
            handler.request_handler = self
            handler.run(self.server.get_app())

        def log_message(self, format, *args):
            log.debug(
                "http-request",
                client=self.address_string(),
                message=format % args,
            )

    class Server(ThreadingWSGIServer):
        address_family = family

        def handle_error(self, request, client_address):
            log.warning(
                "http-connection-failed",
                client=client_address[0],
                exc_info=True,
            )

    return make_wsgi_server(
        host,
        port,
        make_wsgi_app(registry),
        server_class=Server,
        handler_class=RequestHandler,
    )
