"""Kubernetes cluster access for the keeper."""
