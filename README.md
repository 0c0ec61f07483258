# dnsrules

Rule matchers for DNS traffic, and a few probes that check how a
DNS-over-TCP or DNS-over-TLS server handles its connections.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Matchers

A matcher is built from a short "quick setup" string and then asked,
through its `match(qctx)` method, whether a `QueryContext` matches. A
`QueryContext` holds the query (a `dns.message.Message`), the response if
there is one, and a `ServerMeta` with the client address, URL path and
server name.

Build a matcher by type name with `dnsrules.matcher.quick_setup(ctx,
type_name, s)`. `ctx` is a `SetupContext`: its `plugins` dictionary is
what `get_plugin(tag)` looks tags up in, and its `logger` is handed to
matchers that log. New types can be added with
`register_quick_setup(type_name, func)`; registering a name twice raises
`ValueError`, and an unknown name passed to `quick_setup` raises
`KeyError`.

The types in `dnsrules.matcher` are registered when that module is
imported. The `string_exp` type is registered by importing
`dnsrules.string_exp`, and the IP types by importing `dnsrules.ipmatch`.

| type             | argument string                       | matches when                                                   |
|------------------|---------------------------------------|----------------------------------------------------------------|
| `qtype`          | integers, e.g. `1 28`                 | any question has one of these types                            |
| `qclass`         | integers, e.g. `1`                    | any question has one of these classes                          |
| `rcode`          | integers, e.g. `2 3`                  | there is a response and its rcode is one of these              |
| `env`            | `KEY`, or two words                   | the environment variable (the last word) is set                |
| `has_resp`       | ignored                               | a response is present                                          |
| `has_wanted_ans` | ignored                               | an answer has the first question's type and class              |
| `random`         | a probability, e.g. `0.3`             | randomly, with that probability                                |
| `string_exp`     | `source op [string]...`               | see below                                                      |
| `client_ip`      | `ip`, `cidr`, `$ip_set_tag`, `&file`  | the client address is known and in the set                     |
| `ptr_ip`         | same as above                         | a PTR question names an address in the set                     |
| `resp_ip`        | same as above                         | an A or AAAA answer holds an address in the set                |

Integer arguments are parsed with `parse_int_args`; a token that is not
an integer raises `ValueError` naming its position. The `env` check is
made once, when the matcher is built: the result is a `MatchAlwaysTrue`
or `MatchAlwaysFalse`. `check_env(key, value)` can also compare the
variable with a value.

### String expressions

`dnsrules.string_exp.quick_setup_from_str` takes `source op [string]...`:

- `source` is `url_path`, `server_name`, or `$ENV_NAME` for an
  environment variable (an unset variable reads as the empty string);
- `op` is `zl` (the string is empty), `eq`, `prefix`, `suffix`,
  `contains` or `regexp`; with several strings, any one of them matching
  is enough. `regexp` matches anywhere in the string unless anchored.

```python
import dns.message
from dnsrules.matcher import QueryContext, ServerMeta
from dnsrules.string_exp import quick_setup_from_str

matcher = quick_setup_from_str("url_path eq /dns-query")
qctx = QueryContext(
    query=dns.message.make_query("example.com.", "A"),
    server_meta=ServerMeta(url_path="/dns-query"),
)
assert matcher.match(qctx)
```

An unknown source or operator, fewer than two words, or a bad regular
expression raises `ValueError`.

### IP sets

`dnsrules.ipmatch.parse_ip_args` splits its string into an `IPArgs`:
plain addresses or CIDR prefixes, `$tag` references to ip sets, and
`&path` files. A file lists one address or prefix per line; text after
`#` is a comment and blank lines are skipped. An ip set is any plugin in
the `SetupContext` with a `get_ip_matcher()` method that returns a
callable taking an address and returning a bool; a tag without one
raises `ValueError`, as does an address, prefix or file that cannot be
read.

## Server probes

`dnsrules.probe` works on addresses of the form `tcp://host[:port]`
(default port 53) or `tls://host[:port]` (default port 853, certificate
verified against the host name).

- `get_connection(addr)` opens the connection; a missing scheme or
  host, or a scheme other than `tcp` or `tls`, raises `ValueError`.
- `probe_connection_reuse(addr)` sends three queries over one
  connection, one after another, and raises `ConnectionError` if any
  exchange fails.
- `probe_pipeline(addr)` sends two queries back to back and returns
  `True` if the answers came back out of order.
- `probe_idle_timeout(addr)` sends one query, then waits for the server
  to close the connection and returns the seconds that took.

Progress is reported through the `dnsrules.probe` logger.

## What this package does not do

There is no command-line tool: the probes are library functions only.
The package does not generate or convert configuration files, and it
runs no DNS server of its own; matchers are meant to be called from code
that already has a query and, possibly, its response.