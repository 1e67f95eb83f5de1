"""
Passive event handlers that observe a bus without influencing it.
"""
from overlaybus.events.handlers.diagnostics import DiagnosticSink

__all__ = ['DiagnosticSink']
