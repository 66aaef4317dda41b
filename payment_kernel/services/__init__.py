"""Write services (flush-only) and the committing command facade."""
