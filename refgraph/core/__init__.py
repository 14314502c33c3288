"""Core error types shared across refgraph."""
