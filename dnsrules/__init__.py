"""Rule matchers for DNS queries and responses, and probes for DNS-over-TCP/TLS servers."""

__version__ = "0.1.0"