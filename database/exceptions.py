"""Database exceptions."""

class DatabaseError(Exception):
    """Base class for database errors."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema initialization or migration fails."""
    pass

class GraphStoreError(DatabaseError):
    """Raised when a graph store operation cannot be completed."""
    pass

class NodeNotFoundError(GraphStoreError):
    """Raised when an edge references a node that does not exist."""
    def __init__(self, node_id):
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found")
