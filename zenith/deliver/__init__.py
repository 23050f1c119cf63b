"""Delivery stage: serve a build archive and expose it through a tunnel."""
