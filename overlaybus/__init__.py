"""Overlay event bus with cross-process bridging."""
