"""Matchers on IP addresses: the client's, a PTR query's, and a response's."""

from __future__ import annotations

import ipaddress
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from pathlib import Path

import dns.exception
import dns.rdatatype
import dns.reversename

from dnsrules.matcher import QueryContext, SetupContext, register_quick_setup

Address = IPv4Address | IPv6Address
Network = IPv4Network | IPv6Network
Contains = Callable[[Address], bool]
IPMatchFunc = Callable[[QueryContext, Contains], bool]


@dataclass
class IPArgs:
    """Sources of addresses for an IP matcher."""

    ips: list[str] = field(default_factory=list)
    ip_sets: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)


class _IPList:
    """A set of networks that answers whether it contains an address."""

    def __init__(self) -> None:
        self._networks: list[Network] = []

    def add(self, network: Network) -> None:
        self._networks.append(network)

    def sort(self) -> None:
        v4 = [n for n in self._networks if n.version == 4]
        v6 = [n for n in self._networks if n.version == 6]
        self._networks = [
            *ipaddress.collapse_addresses(v4),
            *ipaddress.collapse_addresses(v6),
        ]

    def __len__(self) -> int:
        return len(self._networks)

    def __call__(self, addr: Address) -> bool:
        return any(addr in network for network in self._networks)


def _parse_network(text: str) -> Network:
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise ValueError(f"invalid ip or prefix {text!r}, {exc}") from exc


def _file_entries(path: str) -> Iterator[tuple[int, str]]:
    with Path(path).open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            entry = line.split("#", 1)[0].strip()
            if entry:
                yield lineno, entry


def _load_ips_and_files(ips: Iterable[str], files: Iterable[str], target: _IPList) -> None:
    for i, text in enumerate(ips):
        try:
            target.add(_parse_network(text))
        except ValueError as exc:
            raise ValueError(f"failed to load ip #{i} {text}, {exc}") from exc
    for path in files:
        try:
            for lineno, entry in _file_entries(path):
                try:
                    target.add(_parse_network(entry))
                except ValueError as exc:
                    raise ValueError(f"line {lineno}: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise ValueError(f"failed to load file {path}, {exc}") from exc


class IPMatcher:
    """Runs ``func`` against the union of ip sets, listed addresses and files.

    An ip set is a plugin with a ``get_ip_matcher()`` method returning a
    callable that takes an address and returns a bool.
    """

    def __init__(self, ctx: SetupContext, args: IPArgs, func: IPMatchFunc) -> None:
        self._func = func
        self._group: list[Contains] = []

        for tag in args.ip_sets:
            provider = ctx.get_plugin(tag)
            getter = getattr(provider, "get_ip_matcher", None)
            if getter is None:
                raise ValueError(f"cannot find ipset {tag}")
            self._group.append(getter())

        if args.ips or args.files:
            anonymous = _IPList()
            _load_ips_and_files(args.ips, args.files, anonymous)
            anonymous.sort()
            if len(anonymous) > 0:
                self._group.append(anonymous)

    def _contains(self, addr: Address) -> bool:
        return any(contains(addr) for contains in self._group)

    def match(self, qctx: QueryContext) -> bool:
        return self._func(qctx, self._contains)


def parse_ip_args(s: str) -> IPArgs:
    """Parse ``"([ip] | [$ip_set_tag] | [&ip_list_file])..."``."""
    args = IPArgs()
    for exp in s.split():
        if exp.startswith("$"):
            args.ip_sets.append(exp[1:])
        elif exp.startswith("&"):
            args.files.append(exp[1:])
        else:
            args.ips.append(exp)
    return args


def match_client_ip(qctx: QueryContext, contains: Contains) -> bool:
    """True if the client's address is known and contained."""
    addr = qctx.server_meta.client_addr
    if addr is None:
        return False
    return contains(addr)


def _ptr_address(name: dns.name.Name) -> Address | None:
    try:
        return ipaddress.ip_address(dns.reversename.to_address(name))
    except (dns.exception.DNSException, ValueError):
        return None


def match_ptr_ip(qctx: QueryContext, contains: Contains) -> bool:
    """True if a PTR question names a contained address."""
    for question in qctx.query.question:
        if question.rdtype != dns.rdatatype.PTR:
            continue
        addr = _ptr_address(question.name)
        if addr is not None and contains(addr):
            return True
    return False


def match_resp_ip(qctx: QueryContext, contains: Contains) -> bool:
    """True if an A or AAAA answer of the response holds a contained address."""
    response = qctx.response
    if response is None:
        return False
    for rrset in response.answer:
        if rrset.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            continue
        for rdata in rrset:
            try:
                addr = ipaddress.ip_address(rdata.address)
            except ValueError:
                continue
            if contains(addr):
                return True
    return False


def client_ip_quick_setup(ctx: SetupContext, s: str) -> IPMatcher:
    return IPMatcher(ctx, parse_ip_args(s), match_client_ip)


def ptr_ip_quick_setup(ctx: SetupContext, s: str) -> IPMatcher:
    return IPMatcher(ctx, parse_ip_args(s), match_ptr_ip)


def resp_ip_quick_setup(ctx: SetupContext, s: str) -> IPMatcher:
    return IPMatcher(ctx, parse_ip_args(s), match_resp_ip)


register_quick_setup("client_ip", client_ip_quick_setup)
register_quick_setup("ptr_ip", ptr_ip_quick_setup)
register_quick_setup("resp_ip", resp_ip_quick_setup)