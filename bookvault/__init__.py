"""Personal book catalog: validation, storage, search and import/export."""
