"""Read-side selectors.  Selectors never add, flush, or commit."""
