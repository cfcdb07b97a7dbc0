# Devboard: a curated, reorderable dashboard of local development projects.
#
# Components:
#   schema.py     - Data model (Project, ProjectGroup, StoredState) and legacy migration
#   errors.py     - Exception hierarchy for storage and capture failures
#   sync_slot.py  - Key-value mirror backend (SQLite or in-memory)
#   store.py      - ProjectStore: file + sync slot persistence, ordering, import/export
#   screenshot.py - Headless browser capture in a bounded subprocess
#   config.py     - YAML runtime configuration
#   host.py       - Host UI collaborator contract (pickers, prompts, confirmation)
#   dashboard.py  - Orchestrator wiring user actions to the store and capture
#   cli.py        - Command-line entry point

__version__ = "0.3.0"
