"""
Recorder module for songrank.

Turns playlist, queue and search co-occurrence into graph edges.
"""

from .relationships import RelationshipRecorder

__all__ = ["RelationshipRecorder"]
