"""Probes that check how a DNS-over-TCP or DNS-over-TLS server handles connections."""

from __future__ import annotations

import logging
import secrets
import socket
import ssl
import struct
import time

import dns.exception
import dns.message
import dns.rdatatype

logger = logging.getLogger("dnsrules.probe")

_PROBE_NAME = "www.cloudflare.com."
_HANDSHAKE_TIMEOUT = 5.0
_WRITE_TIMEOUT = 3.0
_READ_TIMEOUT = 10.0

_ReadErrors = (OSError, dns.exception.DNSException)


def _split_scheme(addr: str) -> tuple[str, str]:
    scheme, sep, host = addr.partition("://")
    if not sep:
        return "", addr
    return scheme, host


def _split_host_port(text: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]``, falling back to ``default_port`` when none is given."""
    if text.startswith("[") and "]:" in text:
        host, _, port = text[1:].rpartition("]:")
    elif text.count(":") == 1:
        host, _, port = text.partition(":")
    else:
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        return text, default_port
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in {text}") from None


def get_connection(addr: str) -> socket.socket:
    """Open a connection to ``tcp://host[:port]`` or ``tls://host[:port]``."""
    protocol, host = _split_scheme(addr)
    if not protocol or not host:
        raise ValueError(f"invalid addr {addr}")

    if protocol == "tcp":
        return socket.create_connection(_split_host_port(host, 53))

    if protocol == "tls":
        server_name, port = _split_host_port(host, 853)
        sock = socket.create_connection((server_name, port))
        sock.settimeout(_HANDSHAKE_TIMEOUT)
        context = ssl.create_default_context()
        try:
            tls_sock = context.wrap_socket(sock, server_hostname=server_name)
        except OSError as exc:
            sock.close()
            raise ConnectionError(f"tls handshake failed: {exc}") from exc
        tls_sock.settimeout(None)
        return tls_sock

    raise ValueError(f"invalid protocol {protocol}")


def _write_msg(sock: socket.socket, msg: dns.message.Message) -> None:
    wire = msg.to_wire()
    sock.sendall(struct.pack("!H", len(wire)) + wire)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("connection closed by peer")
        data += chunk
    return bytes(data)


def _read_msg(sock: socket.socket) -> dns.message.Message:
    (length,) = struct.unpack("!H", _recv_exact(sock, 2))
    return dns.message.from_wire(_recv_exact(sock, length))


def _query(name: str, rdtype: dns.rdatatype.RdataType, msg_id: int) -> dns.message.Message:
    query = dns.message.make_query(name, rdtype)
    query.id = msg_id
    return query


def probe_connection_reuse(addr: str) -> None:
    """Send three queries over one connection; raise if any exchange fails."""
    with get_connection(addr) as sock:
        for i in range(3):
            sock.settimeout(_WRITE_TIMEOUT)
            query = _query(_PROBE_NAME, dns.rdatatype.A, i)
            logger.info("sending msg #%d", i)
            try:
                _write_msg(sock, query)
            except OSError as exc:
                raise ConnectionError(f"failed to write #{i} probe msg: {exc}") from exc
            try:
                _read_msg(sock)
            except _ReadErrors as exc:
                raise ConnectionError(
                    f"failed to read #{i} probe msg response: {exc}"
                ) from exc
            logger.info("received response #%d", i)
    logger.info("server %s supports RFC 1035 connection reuse", addr)


def probe_pipeline(addr: str) -> bool:
    """Send two queries at once; return True if the answers came out of order."""
    domains = [f"{secrets.token_hex(16)}.com.", "."]
    with get_connection(addr) as sock:
        for i, domain in enumerate(domains):
            sock.settimeout(_WRITE_TIMEOUT)
            try:
                _write_msg(sock, _query(domain, dns.rdatatype.NS, i))
            except OSError as exc:
                raise ConnectionError(f"failed to write #{i} probe msg: {exc}") from exc

        out_of_order = False
        start = time.monotonic()
        for i in range(len(domains)):
            sock.settimeout(_READ_TIMEOUT)
            try:
                response = _read_msg(sock)
            except _ReadErrors as exc:
                raise ConnectionError(
                    f"failed to read #{i} probe msg response: {exc}"
                ) from exc
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.info("#%d response received, latency: %d ms", response.id, latency_ms)
            if response.id != i:
                out_of_order = True

    if out_of_order:
        logger.info("server supports RFC7766 query pipelining")
    else:
        logger.info(
            "no out-of-order response received in this test, "
            "server MAY NOT support RFC7766 query pipelining"
        )
    return out_of_order


def probe_idle_timeout(addr: str) -> float:
    """Wait for the server to close an idle connection; return the seconds it took."""
    with get_connection(addr) as sock:
        try:
            _write_msg(sock, _query(_PROBE_NAME, dns.rdatatype.A, 0))
        except OSError as exc:
            raise ConnectionError(f"failed to write probe msg: {exc}") from exc

        logger.info(
            "testing server idle timeout, awaiting server closing the connection, "
            "this may take a while"
        )
        start = time.monotonic()
        try:
            _read_msg(sock)
        except _ReadErrors as exc:
            raise ConnectionError(f"failed to read probe msg response: {exc}") from exc

        while True:
            try:
                _read_msg(sock)
            except _ReadErrors:
                break

    elapsed = time.monotonic() - start
    logger.info("connection closed by peer, its idle timeout is %.2f sec", elapsed)
    return elapsed