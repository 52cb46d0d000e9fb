"""Kubernetes connectivity and REST access."""
