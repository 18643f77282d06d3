"""
Ledger Backup Engine - snapshot, restore and scheduling for the client ledger.

The ledger keeps clients, appointments, service tags and expenses in a local
relational store. This package keeps that data safe:

- Snapshots of the whole store serialized to a tagged JSON document
- A drop-and-replace restore that remaps every primary key
- A debounced scheduler that turns bursts of edits into one backup
- Bounded local history plus a best-effort remote copy

Architecture:
    ┌──────────────┐  notify_changed()  ┌────────────────────┐
    │ Mutation path│───────────────────▶│ BackupScheduler    │
    └──────────────┘                    │ (debounce window)  │
                                        └─────────┬──────────┘
                                                  │ run cycle
                                                  ▼
    ┌──────────────┐   read all   ┌───────────────────────────┐
    │ EntityStore  │◀─────────────│ BackupService             │
    │ (SQLite)     │              │ builder → codec → history │
    └──────▲───────┘              └──────┬──────────────┬─────┘
           │                             │              │ best effort
           │ clear + reinsert            ▼              ▼
    ┌──────┴───────┐             ┌─────────────┐  ┌──────────────┐
    │RestoreEngine │◀── decode ──│ latest/     │  │RemoteUploader│
    └──────────────┘             │ history/    │  │ (S3)         │
                                 └─────────────┘  └──────────────┘

Invariants:
    - CURRENT_SCHEMA_VERSION is defined once, in models.snapshot
    - A restore never runs while a backup cycle reads the store
    - Local durability never depends on the remote upload
    - Every foreign key in a restored store resolves

How to change safely:
    - Bump CURRENT_SCHEMA_VERSION when the entity graph changes shape
    - Keep new snapshot fields optional so older backups still decode
    - Never rename enum members, they are persisted by name
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
