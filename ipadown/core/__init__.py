"""Core modules: store API, sessions, catalog, download, repackaging and serving."""
