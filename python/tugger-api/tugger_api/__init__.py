"""Tugger admission webhook service."""
