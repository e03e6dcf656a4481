"""todosync - offline-first task list synchronization."""
