"""VOAT job board backend: account lifecycle and credential security."""
