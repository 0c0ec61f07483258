"""Query matchers that inspect a DNS query context, and their quick-setup registry."""

from __future__ import annotations

import logging
import os
import random
import re
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Protocol

import dns.message


class Matcher(Protocol):
    """Anything that can decide whether a query context matches."""

    def match(self, qctx: QueryContext) -> bool: ...


@dataclass
class ServerMeta:
    """Information about how the query reached the server."""

    client_addr: IPv4Address | IPv6Address | None = None
    url_path: str = ""
    server_name: str = ""


@dataclass
class QueryContext:
    """A query, its response (if any) and server metadata."""

    query: dns.message.Message
    response: dns.message.Message | None = None
    server_meta: ServerMeta = field(default_factory=ServerMeta)


@dataclass
class SetupContext:
    """What a quick-setup function may use: other plugins and a logger."""

    plugins: dict[str, Any] = field(default_factory=dict)
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("dnsrules")
    )

    def get_plugin(self, tag: str) -> Any:
        """Return the plugin registered under ``tag``, or None."""
        return self.plugins.get(tag)


QuickSetupFunc = Callable[[SetupContext, str], Matcher]


class _ConstantMatcher:
    """Matcher whose outcome is fixed when it is built."""

    _result: bool = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MatchAlwaysTrue(_ConstantMatcher):
    """Matcher that always matches."""

    _result = True

    def match(self, qctx: QueryContext) -> bool:
        return self._result


class MatchAlwaysFalse(_ConstantMatcher):
    """Matcher that never matches."""

    _result = False

    def match(self, qctx: QueryContext) -> bool:
        return self._result


# ---------------------------------------------------------------------------
# Integer matchers (qtype, qclass, rcode)
# ---------------------------------------------------------------------------

IntMatchFunc = Callable[[QueryContext, frozenset[int]], bool]

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


class IntMatcher:
    """Matches when ``func`` finds a value of the context among ``values``."""

    def __init__(self, values: Iterable[int], func: IntMatchFunc) -> None:
        self.values = frozenset(values)
        self._func = func

    def match(self, qctx: QueryContext) -> bool:
        return self._func(qctx, self.values)


def parse_int_args(s: str) -> list[int]:
    """Parse whitespace-separated integers."""
    result = []
    for i, token in enumerate(s.split()):
        if not _INT_RE.fullmatch(token):
            raise ValueError(f"arg #{i} is not an int: {token!r}")
        value = int(token)
        if not _INT_MIN <= value <= _INT_MAX:
            raise ValueError(f"arg #{i} is not an int: {token!r} out of range")
        result.append(value)
    return result


def int_quick_setup(func: IntMatchFunc) -> QuickSetupFunc:
    """Return a quick-setup function building an IntMatcher around ``func``."""

    def setup(ctx: SetupContext, s: str) -> IntMatcher:
        try:
            values = parse_int_args(s)
        except ValueError as exc:
            raise ValueError(f"invalid args, {exc}") from exc
        return IntMatcher(values, func)

    return setup


def match_qtype(qctx: QueryContext, values: frozenset[int]) -> bool:
    """True if any question's type is in ``values``."""
    return any(int(q.rdtype) in values for q in qctx.query.question)


def match_qclass(qctx: QueryContext, values: frozenset[int]) -> bool:
    """True if any question's class is in ``values``."""
    return any(int(q.rdclass) in values for q in qctx.query.question)


def match_rcode(qctx: QueryContext, values: frozenset[int]) -> bool:
    """True if there is a response and its rcode is in ``values``."""
    if qctx.response is None:
        return False
    return int(qctx.response.rcode()) in values


# ---------------------------------------------------------------------------
# Environment matcher
# ---------------------------------------------------------------------------


def check_env(key: str, value: str = "") -> Matcher:
    """Check once whether ``key`` is set (and equals ``value`` if given)."""
    current = os.environ.get(key)
    if current is None:
        matched = False
    elif not value:
        matched = True
    else:
        matched = current == value
    return MatchAlwaysTrue() if matched else MatchAlwaysFalse()


def env_quick_setup(ctx: SetupContext, s: str) -> Matcher:
    """Build an environment matcher from one or two arguments.

    With two arguments the second is used as the key, and no value is compared.
    """
    fields = s.split()
    if len(fields) == 1:
        key = fields[0]
    elif len(fields) == 2:
        key = fields[1]
    else:
        raise ValueError(f"invalid arg number {len(fields)}")
    return check_env(key, "")


# ---------------------------------------------------------------------------
# Response matchers
# ---------------------------------------------------------------------------


class HasResp:
    """Matches when the context carries a response."""

    def match(self, qctx: QueryContext) -> bool:
        return qctx.response is not None


def has_resp_quick_setup(ctx: SetupContext, s: str) -> HasResp:
    return HasResp()


class HasWantedAnswer:
    """Matches when the response answers the first question's type and class."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("dnsrules")

    def match(self, qctx: QueryContext) -> bool:
        if not qctx.query.question:
            return False
        response = qctx.response
        if response is None or not response.answer:
            return False
        question = qctx.query.question[0]
        self._logger.debug("has_wanted_ans processing, question %s", question)
        for rrset in response.answer:
            if rrset.rdtype == question.rdtype and rrset.rdclass == question.rdclass:
                self._logger.debug("has_wanted_ans hit, question %s", question)
                return True
        return False


def has_wanted_ans_quick_setup(ctx: SetupContext, s: str) -> HasWantedAnswer:
    return HasWantedAnswer(ctx.logger)


# ---------------------------------------------------------------------------
# Random matcher
# ---------------------------------------------------------------------------


class RandomMatcher:
    """Matches with probability ``prob``."""

    def __init__(self, prob: float, rng: random.Random | None = None) -> None:
        self.prob = prob
        self._rng = rng if rng is not None else random.Random()
        self._lock = threading.Lock()

    def match(self, qctx: QueryContext) -> bool:
        return self.rand_bool()

    def rand_bool(self) -> bool:
        with self._lock:
            return self._rng.random() < self.prob


def random_quick_setup(ctx: SetupContext, s: str) -> RandomMatcher:
    """Build a RandomMatcher from a probability string."""
    if not s:
        raise ValueError("a float64 probability is required")
    if s != s.strip() or "_" in s:
        raise ValueError(f"invalid probability, {s!r}")
    try:
        prob = float(s)
    except ValueError as exc:
        raise ValueError(f"invalid probability, {exc}") from exc
    return RandomMatcher(prob)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_QUICK_SETUPS: dict[str, QuickSetupFunc] = {}


def register_quick_setup(type_name: str, func: QuickSetupFunc) -> None:
    """Register a quick-setup function under ``type_name``."""
    if type_name in _QUICK_SETUPS:
        raise ValueError(f"duplicated matcher type {type_name}")
    _QUICK_SETUPS[type_name] = func


def quick_setup(ctx: SetupContext, type_name: str, s: str) -> Matcher:
    """Build a matcher of the registered ``type_name`` from ``s``."""
    try:
        func = _QUICK_SETUPS[type_name]
    except KeyError:
        raise KeyError(f"unknown matcher type {type_name}") from None
    return func(ctx, s)


register_quick_setup("qtype", int_quick_setup(match_qtype))
register_quick_setup("qclass", int_quick_setup(match_qclass))
register_quick_setup("rcode", int_quick_setup(match_rcode))
register_quick_setup("env", env_quick_setup)
register_quick_setup("has_resp", has_resp_quick_setup)
register_quick_setup("has_wanted_ans", has_wanted_ans_quick_setup)
register_quick_setup("random", random_quick_setup)