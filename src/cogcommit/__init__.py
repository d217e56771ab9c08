"""
CogCommit - capture AI coding-assistant work as commits and sync it to the cloud.

The local store owns every commit until it is pushed; the remote service is the
authority for version counters afterwards. See ``cogcommit.sync`` for the
push/pull/conflict engines.
"""

__version__ = "0.1.0"
