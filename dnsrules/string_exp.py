"""Matchers on strings taken from the query context or the environment."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Iterable

from dnsrules.matcher import (
    QueryContext,
    SetupContext,
    register_quick_setup,
)

GetStrFunc = Callable[[QueryContext], str]
StrPredicate = Callable[[str], bool]


class StringExpMatcher:
    """Applies a string predicate to a string drawn from the context."""

    def __init__(self, get_str: GetStrFunc, string_matcher: StrPredicate) -> None:
        self._get_str = get_str
        self._string_matcher = string_matcher

    def match(self, qctx: QueryContext) -> bool:
        return self._string_matcher(self._get_str(qctx))


def _any_of(args: Iterable[str], pred: Callable[[str, str], bool]) -> StrPredicate:
    values = tuple(args)
    return lambda s: any(pred(s, arg) for arg in values)


def _build_op(op: str, args: list[str]) -> StrPredicate:
    if op == "zl":
        return lambda s: len(s) == 0
    if op == "eq":
        wanted = frozenset(args)
        return lambda s: s in wanted
    if op == "regexp":
        try:
            patterns = [re.compile(a) for a in args]
        except re.error as exc:
            raise ValueError(f"invalid reg expression, {exc}") from exc
        return lambda s: any(p.search(s) for p in patterns)
    if op == "prefix":
        return _any_of(args, str.startswith)
    if op == "suffix":
        return _any_of(args, str.endswith)
    if op == "contains":
        return _any_of(args, lambda s, sub: sub in s)
    raise ValueError(f"invalid operator {op}")


def _build_source(name: str) -> GetStrFunc:
    if name.startswith("$"):
        env_key = name[1:]
        return lambda _qctx: os.environ.get(env_key, "")
    if name == "url_path":
        return lambda qctx: qctx.server_meta.url_path
    if name == "server_name":
        return lambda qctx: qctx.server_meta.server_name
    raise ValueError(f"invalid src string name {name}")


def quick_setup_from_str(s: str) -> StringExpMatcher:
    """Build a matcher from ``"src op [string]..."``.

    ``src`` is ``url_path``, ``server_name`` or ``$ENV_KEY``; ``op`` is one of
    ``zl``, ``eq``, ``prefix``, ``suffix``, ``contains``, ``regexp``.
    """
    fields = s.split()
    if len(fields) < 2:
        raise ValueError("not enough args")
    src_name, op, args = fields[0], fields[1], fields[2:]
    predicate = _build_op(op, args)
    get_str = _build_source(src_name)
    return StringExpMatcher(get_str, predicate)


def string_exp_quick_setup(ctx: SetupContext, s: str) -> StringExpMatcher:
    return quick_setup_from_str(s)


register_quick_setup("string_exp", string_exp_quick_setup)