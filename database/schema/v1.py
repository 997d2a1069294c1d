"""Schema v1 - Ledger property graph.

This version includes tables for:
- Graph nodes (anchor, blocks, transactions, outputs) with JSONB properties
- Directed, typed edges between them
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'graph_nodes',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'properties', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'anchor', 'type': 'BOOL', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_graph_nodes_anchor', 'columns': ['anchor'], 'unique': True, 'where': 'anchor'},
                {'name': 'idx_graph_nodes_properties', 'columns': ['properties jsonb_path_ops'], 'using': 'GIN'}
            ]
        },
        {
            'name': 'graph_edges',
            'columns': [
                {'name': 'id', 'type': 'BIGSERIAL', 'primary_key': True},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'start_id', 'type': 'INT8', 'nullable': False},
                {'name': 'end_id', 'type': 'INT8', 'nullable': False},
                {'name': 'properties', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['start_id'], 'references': 'graph_nodes(id)'},
                {'columns': ['end_id'], 'references': 'graph_nodes(id)'}
            ],
            'indexes': [
                {'name': 'idx_graph_edges_start', 'columns': ['start_id', 'type']},
                {'name': 'idx_graph_edges_end', 'columns': ['end_id', 'type']},
                # An output is spent at most once
                {'name': 'idx_graph_edges_received', 'columns': ['start_id'], 'unique': True, 'where': "type = 'received'"}
            ]
        }
    ],
    'migrations': []
}
