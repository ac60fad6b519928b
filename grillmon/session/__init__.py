"""
session/__init__.py — cook-session model, merge rules, storage backends,
SessionManager and SyncOrchestrator.

Import from the submodules directly; grillmon.cache and grillmon.store
depend on session.schemas, so this package re-exports nothing.
"""
