import os
import sys
import signal
import asyncio
import logging
import argparse
import typing

from sdft import __version__
from sdft.conf import ClientConfig, ServerConfig
from sdft.console import Basic, Progress
from sdft.error import BaseError, ConfigurationError, CertificateMissingError
from sdft.certs import generate_self_signed_cert
from sdft.prometheus import PrometheusServer
from sdft.relay.client import TransferClient
from sdft.relay.server import RendezvousServer

log = logging.getLogger('sdft')
log.addHandler(logging.NullHandler())

DEFAULT_FORMATTER = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s:%(lineno)d: %(message)s")
CONSOLE_HANDLER = logging.StreamHandler()
CONSOLE_HANDLER.setFormatter(DEFAULT_FORMATTER)


def setup_logging(verbose: bool = False, quiet: bool = False, loop: typing.Optional[asyncio.AbstractEventLoop] = None):
    if quiet:
        log.removeHandler(CONSOLE_HANDLER)
    elif CONSOLE_HANDLER not in log.handlers:
        log.addHandler(CONSOLE_HANDLER)
    logging.getLogger('aiohttp').setLevel(logging.CRITICAL)
    if verbose:
        log.setLevel(logging.DEBUG)
        if loop is not None:
            loop.set_debug(True)
    else:
        log.setLevel(logging.INFO)


def get_client_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sdft', description="Send a file or directory to another machine through a transfer server."
    )
    parser.add_argument('-v', '--version', action='version', version=f'sdft {__version__}')
    parser.add_argument('-u', '--upload', metavar='PATH', help="File or directory to upload.")
    parser.add_argument('-d', '--download', metavar='CODE', help="Code of the upload to download.")
    parser.add_argument('-p', '--password', help="Password protecting the upload.")
    parser.add_argument('--verbose', action='store_true', help="Show debug output.")
    ClientConfig.contribute_to_argparse(parser)
    return parser


def get_server_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='sdft-server', description="Pair uploaders with downloaders over TLS.")
    parser.add_argument('--version', action='version', version=f'sdft-server {__version__}')
    parser.add_argument(
        '--generate-cert', action='store_true',
        help="Write a self signed certificate to the configured paths if they don't exist."
    )
    parser.add_argument('--verbose', action='store_true', help="Show debug output.")
    parser.add_argument('--quiet', action='store_true', help="Don't log to the console.")
    ServerConfig.contribute_to_argparse(parser)
    return parser


async def run_client(conf: ClientConfig, args) -> str:
    console = Progress() if conf.progress else Basic()
    client = TransferClient(conf, console)
    if args.upload:
        return await client.upload(args.upload, args.password)
    return await client.download(args.download, args.password)


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    parser = get_client_argument_parser()
    args = parser.parse_args(argv)
    if not args.upload and not args.download:
        parser.print_help()
        return 0
    if args.upload and args.download:
        parser.error("choose one of --upload or --download")

    setup_logging(args.verbose, quiet=not args.verbose)
    try:
        conf = ClientConfig.create_from_arguments(args)
        asyncio.run(run_client(conf, args))
    except (BaseError, AssertionError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 1
    return 0


def ensure_certificate(conf: ServerConfig, generate: bool):
    missing = [path for path in (conf.cert_file, conf.key_file) if not os.path.isfile(path)]
    if not missing:
        return
    if not generate:
        raise CertificateMissingError(missing[0])
    generate_self_signed_cert(conf.cert_file, conf.key_file)


def run_server(conf: ServerConfig, args):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_logging(args.verbose, args.quiet, loop)

    server = RendezvousServer(conf)
    prometheus = PrometheusServer() if conf.prometheus_port else None

    try:
        loop.add_signal_handler(signal.SIGINT, loop.stop)
        loop.add_signal_handler(signal.SIGTERM, loop.stop)
    except NotImplementedError:
        pass  # Not implemented on Windows

    try:
        loop.run_until_complete(server.start())
        if prometheus:
            loop.run_until_complete(prometheus.start(conf.interface, conf.prometheus_port))
        loop.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        if prometheus:
            loop.run_until_complete(prometheus.stop())
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()


def server_main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    args = get_server_argument_parser().parse_args(argv)
    try:
        conf = ServerConfig.create_from_arguments(args)
        ensure_certificate(conf, args.generate_cert)
    except (ConfigurationError, AssertionError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    try:
        run_server(conf, args)
    except OSError as err:
        print(f"Error: could not listen on {conf.interface}:{conf.port}: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
