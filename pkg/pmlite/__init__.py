# PM Lite: project/task tracking, local persistence, cloud sync and notifications
#
# Components:
#   schema.py     - Data model (Task, Project, Comment, Attachment, enums)
#   errors.py     - Exception hierarchy
#   config.py     - YAML + environment configuration
#   storage.py    - SQLite-backed key/value persistence
#   migrate.py    - One-shot schema upgrades of persisted records
#   remote.py     - Hosted backend client (auth, tables, object storage)
#   notify.py     - Outbound notification dispatch
#   reconcile.py  - Merging local edits and realtime change events by id
#   views.py      - Derived data for kanban, calendar, timeline, dashboard
#   export.py     - CSV export and JSON backup import/export
#   workspace.py  - Application root wiring everything together
