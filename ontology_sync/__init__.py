"""Ontology change detection and review engine."""
