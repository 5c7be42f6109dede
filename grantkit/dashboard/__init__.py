"""Flask API for the drafting workbench."""
