import random

import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import pytest

from dnsrules.matcher import (
    HasResp,
    HasWantedAnswer,
    IntMatcher,
    MatchAlwaysFalse,
    MatchAlwaysTrue,
    QueryContext,
    RandomMatcher,
    SetupContext,
    check_env,
    env_quick_setup,
    has_resp_quick_setup,
    has_wanted_ans_quick_setup,
    int_quick_setup,
    match_qclass,
    match_qtype,
    match_rcode,
    parse_int_args,
    quick_setup,
    random_quick_setup,
    register_quick_setup,
)


def _query(qtype="A"):
    return dns.message.make_query("example.com.", qtype)


def _ctx_with_answer(qtype, rrtype, rdata):
    q = _query(qtype)
    r = dns.message.make_response(q)
    r.answer.append(dns.rrset.from_text("example.com.", 300, "IN", rrtype, rdata))
    return QueryContext(query=q, response=r)


@pytest.fixture
def setup_ctx():
    return SetupContext()


def test_always_matchers():
    qctx = QueryContext(query=_query())
    assert MatchAlwaysTrue().match(qctx) is True
    assert MatchAlwaysFalse().match(qctx) is False


def test_get_plugin(setup_ctx):
    plugin = object()
    setup_ctx.plugins["p"] = plugin
    assert setup_ctx.get_plugin("p") is plugin
    assert setup_ctx.get_plugin("missing") is None


def test_parse_int_args():
    assert parse_int_args("1 28 -5 +7") == [1, 28, -5, 7]
    assert parse_int_args("   ") == []


@pytest.mark.parametrize("text", ["1 x", "1 1_0", "1 2.5"])
def test_parse_int_args_rejects(text):
    with pytest.raises(ValueError, match="arg #1"):
        parse_int_args(text)


def test_int_matcher_values():
    m = IntMatcher([1, 2, 2], match_qtype)
    assert m.values == frozenset({1, 2})


def test_qtype_matcher(setup_ctx):
    qctx = QueryContext(query=_query("A"))
    a = int(dns.rdatatype.A)
    aaaa = int(dns.rdatatype.AAAA)
    assert int_quick_setup(match_qtype)(setup_ctx, f"{aaaa} {a}").match(qctx)
    assert not quick_setup(setup_ctx, "qtype", str(aaaa)).match(qctx)


def test_qclass_matcher(setup_ctx):
    qctx = QueryContext(query=_query())
    assert quick_setup(setup_ctx, "qclass", str(int(dns.rdataclass.IN))).match(qctx)
    assert not quick_setup(setup_ctx, "qclass", str(int(dns.rdataclass.CH))).match(qctx)


def test_qtype_no_question(setup_ctx):
    m = quick_setup(setup_ctx, "qtype", str(int(dns.rdatatype.A)))
    assert m.match(QueryContext(query=dns.message.Message())) is False


def test_rcode_matcher(setup_ctx):
    q = _query()
    nx = int(dns.rcode.NXDOMAIN)
    m = quick_setup(setup_ctx, "rcode", str(nx))
    assert m.match(QueryContext(query=q)) is False
    r = dns.message.make_response(q)
    assert m.match(QueryContext(query=q, response=r)) is False
    r.set_rcode(dns.rcode.NXDOMAIN)
    assert m.match(QueryContext(query=q, response=r)) is True
    assert match_rcode(QueryContext(query=q, response=r), frozenset({nx}))


def test_int_quick_setup_invalid(setup_ctx):
    with pytest.raises(ValueError, match="invalid args"):
        quick_setup(setup_ctx, "qtype", "1 abc")


def test_match_qclass_direct():
    qctx = QueryContext(query=_query())
    assert match_qclass(qctx, frozenset({int(dns.rdataclass.IN)}))


def test_check_env(monkeypatch):
    qctx = QueryContext(query=_query())
    monkeypatch.setenv("DNSRULES_TEST_ENV", "abc")
    monkeypatch.delenv("DNSRULES_TEST_ENV_MISSING", raising=False)
    assert check_env("DNSRULES_TEST_ENV", "").match(qctx) is True
    assert check_env("DNSRULES_TEST_ENV", "abc").match(qctx) is True
    assert check_env("DNSRULES_TEST_ENV", "def").match(qctx) is False
    assert check_env("DNSRULES_TEST_ENV_MISSING", "").match(qctx) is False


def test_env_quick_setup(monkeypatch, setup_ctx):
    qctx = QueryContext(query=_query())
    monkeypatch.setenv("DNSRULES_TEST_ENV", "abc")
    monkeypatch.delenv("DNSRULES_TEST_ENV_MISSING", raising=False)
    assert env_quick_setup(setup_ctx, "DNSRULES_TEST_ENV").match(qctx) is True
    assert env_quick_setup(setup_ctx, "DNSRULES_TEST_ENV_MISSING").match(qctx) is False
    # With two arguments the second one is the key.
    assert env_quick_setup(setup_ctx, "DNSRULES_TEST_ENV_MISSING DNSRULES_TEST_ENV").match(qctx)
    assert not env_quick_setup(setup_ctx, "DNSRULES_TEST_ENV DNSRULES_TEST_ENV_MISSING").match(qctx)


@pytest.mark.parametrize("text", ["", "a b c"])
def test_env_quick_setup_bad_arg_count(setup_ctx, text):
    with pytest.raises(ValueError, match="invalid arg number"):
        env_quick_setup(setup_ctx, text)


def test_has_resp(setup_ctx):
    q = _query()
    assert HasResp().match(QueryContext(query=q)) is False
    r = dns.message.make_response(q)
    assert has_resp_quick_setup(setup_ctx, "").match(QueryContext(query=q, response=r)) is True


def test_has_wanted_answer(setup_ctx):
    m = has_wanted_ans_quick_setup(setup_ctx, "")
    assert m.match(_ctx_with_answer("A", "A", "192.0.2.1")) is True
    assert m.match(_ctx_with_answer("A", "CNAME", "target.example.com.")) is False
    assert m.match(_ctx_with_answer("AAAA", "A", "192.0.2.1")) is False


def test_has_wanted_answer_missing_parts():
    m = HasWantedAnswer()
    q = _query()
    assert m.match(QueryContext(query=q)) is False
    assert m.match(QueryContext(query=q, response=dns.message.make_response(q))) is False
    assert m.match(QueryContext(query=dns.message.Message())) is False


def test_random_extremes():
    qctx = QueryContext(query=_query())
    always = RandomMatcher(1.0)
    never = RandomMatcher(0.0)
    assert all(always.match(qctx) for _ in range(100))
    assert not any(never.match(qctx) for _ in range(100))


def test_random_reproducible_with_seed():
    a = RandomMatcher(0.5, random.Random(7))
    b = RandomMatcher(0.5, random.Random(7))
    assert [a.rand_bool() for _ in range(50)] == [b.rand_bool() for _ in range(50)]


def test_random_quick_setup(setup_ctx):
    m = quick_setup(setup_ctx, "random", "0.25")
    assert m.prob == 0.25


@pytest.mark.parametrize("text", ["abc", " 0.5", "0_5"])
def test_random_quick_setup_invalid(setup_ctx, text):
    with pytest.raises(ValueError, match="invalid probability"):
        random_quick_setup(setup_ctx, text)


def test_random_quick_setup_empty(setup_ctx):
    with pytest.raises(ValueError, match="probability is required"):
        random_quick_setup(setup_ctx, "")


def test_registry_duplicate_and_unknown(setup_ctx):
    with pytest.raises(ValueError, match="duplicated"):
        register_quick_setup("qtype", int_quick_setup(match_qtype))
    with pytest.raises(KeyError):
        quick_setup(setup_ctx, "no_such_matcher", "")