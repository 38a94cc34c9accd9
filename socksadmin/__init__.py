"""Buffers, byte parsers, a select-based multiplexer and the admin protocol for a SOCKS5 proxy."""

__version__ = "0.1.0"