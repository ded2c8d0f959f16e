"""
UI package for the Live Match Sync application.

This package contains the Flask server that holds the authoritative match
state and streams its changes to observing clients.
"""
from .stream_broker import StreamBroker, format_event
from .web_app import MatchClosedError, WebAppState, create_app, run_web_app

__all__ = ["StreamBroker", "format_event", "MatchClosedError", "WebAppState", "create_app", "run_web_app"]
