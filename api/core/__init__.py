"""
Shared, cross-cutting code for the API.

`core/` holds small building blocks that multiple features use
(DB wiring, settings, logging, errors, tenant scoping, activity log).
Keep feature-specific SQL and business logic in the corresponding feature
package (e.g. `cohorts/`).
"""
