"""FieldSync - offline-first synchronization core for municipal property field collection."""
