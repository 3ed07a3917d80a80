"""
Shared, cross-cutting code for the API.

`core/` holds the small building blocks every feature uses: DB wiring and
sessions, settings, the actor context, statement-timeout guarding and the
error taxonomy. Keep feature-specific SQL in the feature package
(e.g. `archive/`).
"""
