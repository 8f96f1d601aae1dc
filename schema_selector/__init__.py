"""Kubernetes schema field selection composition function."""
