# HTTP layer: authorization server endpoints, gateway, routers.
# Created: 2026-10-19
