"""
Bidirectional sync between the local record store and the remote record service.

Engines live in their own modules (``push``, ``pull``, ``conflict``) and are
coordinated by ``orchestrator``; ``queue`` runs the orchestrator in the
background.
"""
