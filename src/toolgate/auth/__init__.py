# Bearer credential verification.
# Created: 2026-10-19
