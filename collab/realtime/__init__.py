"""Real-time collaboration: session registry, event relay and websocket transport."""
