"""Templated mail delivery."""
