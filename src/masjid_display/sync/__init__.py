"""
Resource synchronization engine.

Import from the submodules (masjid_display.sync.orchestrator, ...) directly;
this package does not re-export them.
"""
