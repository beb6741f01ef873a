"""Document approval tracking across a project lifecycle."""
