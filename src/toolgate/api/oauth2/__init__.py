# OAuth 2.1 authorization server core and credential store.
# Created: 2026-10-19
