"""Orchestration of ingest, build and delivery for one deploy request."""
