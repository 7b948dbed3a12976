"""Poll RSS/Atom feeds and push new entries to chat groups."""
