"""Real-time infrastructure — dual-transport ingestion + WebSocket fan-out.

Learn: Events reach connected clients through one of two transports:
1. Redis SUBSCRIBE on `tournament_events` (primary)
2. A spool directory of `tournament_*.json` files (fallback, only while
   Redis is unavailable)

Both funnel into one dispatch queue, and a single dispatcher task hands
each envelope to the Broadcaster, which writes it to every registered
WebSocket.
"""
