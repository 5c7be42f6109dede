"""Reference documents.

Modules:
    extractor — plain-text extraction from PDF, DOCX and text uploads
"""
