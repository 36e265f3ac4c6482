"""Hierarchical histograms over secret-shared incremental DPF reports."""

__version__ = "0.1.0"
