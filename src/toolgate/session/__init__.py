# Per-session execution context and tenant selection.
# Created: 2026-10-19
