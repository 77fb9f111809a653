"""Patient record CRUD, search and statistics service."""
