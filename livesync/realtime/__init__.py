"""Realtime infrastructure (Socket.IO).

This package holds the transport side of the bridge: one shared Socket.IO
server and the channel object the lifecycle coordinator publishes through.
"""
