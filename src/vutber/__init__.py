"""
Vutber - realtime command/event gateway

Signed HTTP commands are routed to AI capabilities and a single live-room
session, and every outcome is fanned out to listeners over Server-Sent Events.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
