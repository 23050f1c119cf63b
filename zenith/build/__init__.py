"""Build stage: compile a stored source archive into ``<name>-build.zip``."""
