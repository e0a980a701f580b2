"""Real-time infrastructure — channels, authorization, fan-out, WebSocket.

Learn: Events flow through two hops:
1. Application → POST /api/v1/broadcast → dispatcher → transport PUBLISH
2. Transport SUBSCRIBE → WebSocket → browser/CLI client

This decouples event producers (the CRUD application) from consumers
(open UI surfaces), and lets several gateway processes share one Redis.
"""
