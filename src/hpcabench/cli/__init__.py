"""Command line interface of the benchmark scheduler."""
