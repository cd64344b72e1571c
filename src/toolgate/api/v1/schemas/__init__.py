# Request/response schemas for the v1 routers.
# Created: 2026-10-19
