"""Read-only package inventory scanning of yarn lockfiles, with NDJSON output and exposure-catalog matching."""

__version__ = "0.1.0"