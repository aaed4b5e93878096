import hmac
import socket
import ssl
import typing
import logging
import ipaddress

log = logging.getLogger(__name__)


def passwords_match(expected: str, provided: str) -> bool:
    """Compare two passwords in time independent of where they first differ."""
    return hmac.compare_digest(str(expected).encode(), str(provided).encode())


def server_ssl_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    # clients are not asked for a certificate
    context.verify_mode = ssl.CERT_NONE
    return context


def client_ssl_context(ca_file: typing.Optional[str] = None, cert_file: typing.Optional[str] = None,
                       key_file: typing.Optional[str] = None) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if ca_file:
        context.load_verify_locations(ca_file)
    else:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if cert_file:
        context.load_cert_chain(cert_file, key_file or None)
    return context


def is_internal_ip(address: str) -> bool:
    try:
        parsed_ip = ipaddress.ip_address(address)
    except ValueError:
        return True
    if parsed_ip.version == 6:
        return parsed_ip.is_loopback
    return parsed_ip.is_loopback or parsed_ip.is_link_local or parsed_ip.is_unspecified


def get_local_ip(probe_host: str = "8.8.8.8", probe_port: int = 53) -> typing.Optional[str]:
    """
    Address of the interface used for outgoing traffic, or None if it can't be
    determined. Connecting a UDP socket sends no packets.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((probe_host, probe_port))
            address = s.getsockname()[0]
    except OSError as err:
        log.debug("could not determine local ip: %s", err)
        return None
    if is_internal_ip(address):
        return None
    return address
