# Credential audit log and rate limiting.
# Created: 2026-10-19
