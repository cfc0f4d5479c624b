"""Extraction orchestration and media delivery."""
