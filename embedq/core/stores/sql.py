"""SQL constants for the entity store."""

from __future__ import annotations

from sqlalchemy import TextClause, text

from embedq.core.types.status import EntityKind

# Closed map of entity kind -> table. Table names are never taken from input.
ENTITY_TABLES: dict[EntityKind, str] = {
    EntityKind.RECOMMENDATION: 'recommendations',
    EntityKind.ANNOTATION: 'annotations',
}


# ---------- Entity rows ----------

FETCH_ENTITY_SQL: dict[EntityKind, TextClause] = {
    kind: text(f'SELECT * FROM {table} WHERE id = :id')
    for kind, table in ENTITY_TABLES.items()
}

# pgvector accepts the '[a,b,c]' text form; the cast keeps the driver
# from needing a vector adapter.
PERSIST_EMBEDDING_SQL: dict[EntityKind, TextClause] = {
    kind: text(f"""
        UPDATE {table}
        SET embedding = CAST(:embedding AS vector),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = :id
    """)
    for kind, table in ENTITY_TABLES.items()
}

LIST_ENTITY_IDS_SQL: dict[EntityKind, TextClause] = {
    kind: text(f'SELECT id FROM {table} ORDER BY id')
    for kind, table in ENTITY_TABLES.items()
}

LIST_MISSING_ENTITY_IDS_SQL: dict[EntityKind, TextClause] = {
    kind: text(f'SELECT id FROM {table} WHERE embedding IS NULL ORDER BY id')
    for kind, table in ENTITY_TABLES.items()
}


# ---------- Enrichment lookups ----------

FETCH_PLACE_SQL = text("""
    SELECT name, address FROM places WHERE id = :id
""")

FETCH_SERVICE_SQL = text("""
    SELECT name, service_type, business_name, address FROM services WHERE id = :id
""")

FETCH_USER_SQL = text("""
    SELECT display_name FROM users WHERE id = :id
""")


# ---------- Health ----------

PING_SQL = text('SELECT 1')
