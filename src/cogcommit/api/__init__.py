"""
CogCommit studio API.

FastAPI application exposing sync status and on-demand sync to the local
dashboard.
"""
