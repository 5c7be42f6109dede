"""Proposal production.

Modules:
    exporter — Word (.docx) rendering of the finished proposal
"""
