"""Services implementing the note graph, tags, renaming, search and flashcards."""
