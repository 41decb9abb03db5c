"""
External system integrations.

Metadata provider clients live under this namespace so they remain decoupled from
app entrypoints (`api/`) and job scripts (`scripts/`).
"""
