"""
BrpirCatalog application package.

Layered the same way throughout:

  database.py
      The relational backend: models plus helper functions that own every
      read and write.
  catalog/services/
      Business rules: validation, ownership checks and user-facing messages,
      delegating I/O to ``database``.
  catalog/insights.py
      Pure aggregates computed over already-fetched rows (stats, rankings,
      common games, recommendations).
  catalog/realtime.py
      Fan-out of new notifications to live subscribers.

``brpir_web.py`` creates one instance of each service bound to the
``database`` module; route handlers only translate HTTP to service calls.
"""
