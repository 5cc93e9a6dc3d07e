"""Business-logic layer (MongoDB-backed rules, channels, templates and clusters).

Alert rule services live in:
- alert_rules_service.py (create/update/delete/list flows)
- sync_service.py (apply/teardown of cluster resources)
- reconcile_service.py (live state refresh)
- resync_service.py (background re-apply loop)
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
