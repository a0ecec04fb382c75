"""vigil-schemas: Pydantic models shared across vigil packages."""
