"""Storage core: blob store, layout index, copy engine and garbage collector."""
