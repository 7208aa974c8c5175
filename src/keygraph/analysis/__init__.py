"""Analysis modules for relationship discovery."""
