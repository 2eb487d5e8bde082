"""Schema v1 - Initial reconciler schema.

This version includes tables for:
- Tokens, orders and derived notifications (the read model)
- Per (token, block) listing counters
- The durable job queue, its dead letters and per-queue pause state
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'tokens',
            'columns': [
                {'name': 'token_id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'block_number', 'type': 'INT8', 'nullable': False},
                {'name': 'create_time', 'type': 'INT8', 'nullable': False},
                {'name': 'category', 'type': 'TEXT'},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'royalty_owner', 'type': 'TEXT'},
                {'name': 'royalty_fee', 'type': 'INT8', 'default': '0'},
                {'name': 'thumbnail', 'type': 'TEXT'},
                {'name': 'views', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'likes', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_tokens_royalty_owner', 'columns': ['royalty_owner']},
                {'name': 'idx_tokens_create_time', 'columns': ['create_time']}
            ]
        },
        {
            'name': 'orders',
            'columns': [
                {'name': 'order_id', 'type': 'INT8', 'primary_key': True},
                {'name': 'token_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer', 'type': 'TEXT'},
                {'name': 'order_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'order_state', 'type': 'TEXT', 'nullable': False},
                {'name': 'order_price', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'create_time', 'type': 'INT8', 'nullable': False},
                {'name': 'is_blind_box', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'fences', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'created_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_orders_token', 'columns': ['token_id']},
                {'name': 'idx_orders_seller', 'columns': ['seller']},
                {'name': 'idx_orders_buyer', 'columns': ['buyer']},
                {'name': 'idx_orders_state', 'columns': ['order_state']}
            ]
        },
        {
            'name': 'notifications',
            'columns': [
                {'name': 'order_id', 'type': 'INT8'},
                {'name': 'address', 'type': 'TEXT'},
                {'name': 'type', 'type': 'TEXT'},
                {'name': 'date', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'params', 'type': 'JSONB', 'nullable': False, 'default': "'{}'"},
                {'name': 'read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'}
            ],
            'primary_key': ['order_id', 'address', 'type'],
            'indexes': [
                {'name': 'idx_notifications_address', 'columns': ['address']}
            ]
        },
        {
            'name': 'token_listings',
            'columns': [
                {'name': 'token_id', 'type': 'TEXT'},
                {'name': 'block_number', 'type': 'INT8'},
                {'name': 'count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'updated_at', 'type': 'TIMESTAMP', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['token_id', 'block_number']
        },
        {
            'name': 'jobs',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'queue', 'type': 'TEXT', 'nullable': False},
                {'name': 'job_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'payload', 'type': 'JSONB', 'nullable': False},
                {'name': 'attempts', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'retries', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'run_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'locked_until', 'type': 'TIMESTAMPTZ'},
                {'name': 'last_error', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_jobs_queue_run_at', 'columns': ['queue', 'run_at']}
            ]
        },
        {
            'name': 'dead_letters',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True},
                {'name': 'queue', 'type': 'TEXT', 'nullable': False},
                {'name': 'job_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'payload', 'type': 'JSONB', 'nullable': False},
                {'name': 'attempts', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'retries', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'reason', 'type': 'TEXT', 'nullable': False},
                {'name': 'error', 'type': 'TEXT'},
                {'name': 'failed_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_dead_letters_queue', 'columns': ['queue', 'failed_at']}
            ]
        },
        {
            'name': 'queue_state',
            'columns': [
                {'name': 'queue', 'type': 'TEXT', 'primary_key': True},
                {'name': 'paused', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        }
    ],
    'migrations': []
}
