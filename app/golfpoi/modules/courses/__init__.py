"""
Courses module.

- Course CRUD for any signed-in user; the last editor is stamped on each record.
- Image gallery backed by the configured blob store (attach, detach, reconcile).
- Optional live weather on the detail view when the course has a location.
"""
