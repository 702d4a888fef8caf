"""
TeamSpeak 3 Server Query Bot Client

A Server Query session engine that logs in, subscribes to text channel
events and answers chat messages through a user supplied handler, including
streamed session transcripts and a terminal transcript viewer.
"""

__version__ = "1.0.0"
__author__ = "tsquery contributors"
__description__ = "TeamSpeak 3 Server Query chat bot client"
