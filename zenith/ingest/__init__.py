"""Ingest stage: clone a repository and store it as ``<name>.zip``."""
