import argparse
import signal
import sys

from .log import logger, setup_logging
from .relay import PortRelay
from .table import MAX_CONNECTIONS

EXAMPLES = """examples:
  portrelay 8080 192.168.1.100 80
  portrelay 8080 192.168.1.100 80 192.168.1.50
  portrelay 8080 192.168.1.100 80 192.168.1.50 -v
"""


class RelayArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        sys.stderr.write(f"[ERROR] {message}\n")
        sys.exit(1)


def port_number(value):
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port number: {value}")
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port number: {value}")
    return port


def build_parser():
    parser = RelayArgumentParser(
        prog="portrelay",
        description="TCP port forwarder with IP filtering",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("local_port", type=port_number, help="Local port to listen on")
    parser.add_argument("remote_host", help="Host to forward connections to")
    parser.add_argument("remote_port", type=port_number, help="Port on the remote host")
    parser.add_argument("allowed_ip", nargs="?", default=None,
                        help="Only accept clients from this exact IP address")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show rejected connections and debug output")
    parser.add_argument("--max-connections", type=int, default=MAX_CONNECTIONS,
                        help=f"Concurrent relay limit (default {MAX_CONNECTIONS})")
    parser.add_argument("--bind", default="", help="Local address to bind (default all)")
    return parser


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.max_connections < 1:
        parser.error("--max-connections must be at least 1")
    return args


def print_config(args):
    print("=== TCP Port Forwarder with IP Filtering ===\n")
    print("[#] Configuration:")
    print(f"  Local port:  {args.local_port}")
    print(f"  Remote host: {args.remote_host}")
    print(f"  Remote port: {args.remote_port}")
    if args.allowed_ip is not None:
        print(f"  Allowed IP:  {args.allowed_ip} (filtered mode)")
        print(f"  Verbose:     {'ON' if args.verbose else 'OFF'}")
    else:
        print("  Allowed IP:  ANY (no filtering)")
    print()


def _interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)
    print_config(args)

    relay = PortRelay(
        args.local_port,
        args.remote_host,
        args.remote_port,
        allowed_ip=args.allowed_ip,
        verbose=args.verbose,
        max_connections=args.max_connections,
        bind_host=args.bind,
    )

    signal.signal(signal.SIGINT, _interrupt)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _interrupt)

    try:
        relay.bind()
    except OSError as e:
        logger.error(f"bind() failed: {e.errno}")
        relay.shutdown()
        return 1

    logger.info("Press Ctrl+C to stop")
    try:
        relay.serve_forever()
    except KeyboardInterrupt:
        print()
        try:
            relay.shutdown()
        except KeyboardInterrupt:
            logger.warning("Interrupted during shutdown, exiting now")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
