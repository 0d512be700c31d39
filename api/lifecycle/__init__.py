"""
Status vocabularies and transition rules for every workflow entity.

Nothing in this package touches the database: services load a row, ask
`transitions` whether the requested action is allowed from the row's current
status, and apply the returned target status and effects themselves.
"""
