"""
Route modules for the ClickHouse transfer backend.
"""

from . import query_routes, schema_routes, transfer_routes

# Define router configurations
ROUTER_CONFIGS = {
    "clickhouse": {
        "router": schema_routes.router,
        "prefix": "/api",
        "tags": ["clickhouse"]
    },
    "transfer": {
        "router": transfer_routes.router,
        "prefix": "/api",
        "tags": ["transfer"]
    },
    "queries": {
        "router": query_routes.router,
        "prefix": "/api",
        "tags": ["queries"]
    }
}

def get_router_configs():
    """Get all router configurations."""
    return ROUTER_CONFIGS
