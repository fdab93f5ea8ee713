"""
Scoped authorization engine.

Decides whether a user may perform an action within a scope, based on
direct permission grants and role grants, with versioned resource
policies, a TTL permission cache and Ed25519-signed capability tokens.
"""

__version__ = "0.1.0"
