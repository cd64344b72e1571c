# toolgate: OAuth 2.1 authorization server, bearer authentication and
# per-session tenant scoping for a multi-tenant tool backend.
# Created: 2026-10-19

__version__ = "0.1.0"
