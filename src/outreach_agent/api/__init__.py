"""API routers.

- health: liveness and scheduler status
- webhooks: call-control event webhook (signature verified)
- media: media stream websocket for conversational calls
- callbacks: agent callbacks (internal API key)
"""
