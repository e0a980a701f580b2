"""Python client for the realtime gateway.

Learn: The browser app is the main consumer of the gateway, but the same
protocol is easy to speak from Python:
1. RealtimeClient → one WebSocket, one socket id
2. Subscription → one channel, state machine + dedup + own-echo filter
3. Views → fold events into local state keyed by entity id
"""
