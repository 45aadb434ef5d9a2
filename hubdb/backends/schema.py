"""
Fixed relational schema.

Tables, indexes and the document-field <-> column translation table used by
the relational backend. Parent rows cascade their deletes to dependents.
"""

from collections.abc import Mapping
from typing import Any, Final

from ..constants import IDENTITY_FIELD

FIELD_TO_COLUMN: Final[dict[str, str]] = {
    IDENTITY_FIELD: "id",
    "userId": "user_id",
    "apiKey": "api_key",
    "created": "created_at",
    "lastActive": "last_active",
    "updated": "updated_at",
    "authorId": "author_id",
    "authorName": "author_name",
    "ownerId": "owner_id",
    "ownerName": "owner_name",
    "discussionId": "discussion_id",
    "githubUrl": "github_url",
    "demoUrl": "demo_url",
    "maxParticipants": "max_participants",
}
"""Document field name -> column name. Unlisted names are used as-is."""

COLUMN_TO_FIELD: Final[dict[str, str]] = {column: field for field, column in FIELD_TO_COLUMN.items()}

INTEGER_COLUMNS: Final[frozenset[str]] = frozenset(
    {"id", "user_id", "author_id", "owner_id", "discussion_id"}
)
"""Identity and foreign-key columns; callers may address them with digit strings."""

ARRAY_COLUMNS: Final[frozenset[str]] = frozenset(
    {"technologies", "tags", "prerequisites", "participants"}
)

TABLES: Final[dict[str, str]] = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            username VARCHAR(255) UNIQUE NOT NULL,
            email VARCHAR(255) UNIQUE NOT NULL,
            password VARCHAR(255) NOT NULL,
            api_key VARCHAR(255),
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            last_active TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        )
    """,
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            username VARCHAR(255),
            title VARCHAR(255) NOT NULL,
            description TEXT,
            category VARCHAR(100),
            technologies TEXT[],
            github_url VARCHAR(500),
            demo_url VARCHAR(500),
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            likes INTEGER DEFAULT 0,
            stars INTEGER DEFAULT 0,
            views INTEGER DEFAULT 0
        )
    """,
    "discussions": """
        CREATE TABLE IF NOT EXISTS discussions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            username VARCHAR(255),
            title VARCHAR(255) NOT NULL,
            content TEXT,
            category VARCHAR(100),
            tags TEXT[],
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            replies INTEGER DEFAULT 0,
            views INTEGER DEFAULT 0
        )
    """,
    "replies": """
        CREATE TABLE IF NOT EXISTS replies (
            id SERIAL PRIMARY KEY,
            discussion_id INTEGER REFERENCES discussions(id) ON DELETE CASCADE,
            user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            username VARCHAR(255),
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        )
    """,
    "lessons": """
        CREATE TABLE IF NOT EXISTS lessons (
            id SERIAL PRIMARY KEY,
            author_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            author_name VARCHAR(255),
            title VARCHAR(255) NOT NULL,
            description TEXT,
            content TEXT,
            difficulty VARCHAR(50),
            duration INTEGER,
            prerequisites TEXT[],
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            views INTEGER DEFAULT 0,
            completions INTEGER DEFAULT 0
        )
    """,
    "rooms": """
        CREATE TABLE IF NOT EXISTS rooms (
            id SERIAL PRIMARY KEY,
            owner_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
            owner_name VARCHAR(255),
            name VARCHAR(255) NOT NULL,
            description TEXT,
            participants TEXT[],
            max_participants INTEGER DEFAULT 10,
            status VARCHAR(50) DEFAULT 'active',
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        )
    """,
}
"""CREATE TABLE statements in dependency order (parents first)."""

INDEXES: Final[tuple[str, ...]] = (
    "CREATE INDEX IF NOT EXISTS idx_projects_user_id ON projects (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_projects_created ON projects (created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_discussions_user_id ON discussions (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_discussions_created ON discussions (created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_replies_discussion_id ON replies (discussion_id)",
    "CREATE INDEX IF NOT EXISTS idx_replies_user_id ON replies (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_lessons_author_id ON lessons (author_id)",
    "CREATE INDEX IF NOT EXISTS idx_lessons_created ON lessons (created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_rooms_owner_id ON rooms (owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_rooms_created ON rooms (created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_rooms_status ON rooms (status)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_api_key ON users (api_key) "
    "WHERE api_key IS NOT NULL",
)


def row_to_document(row: Mapping[str, Any]) -> dict[str, Any]:
    """Rename columns to document fields; ``id`` surfaces as ``_id``."""
    return {COLUMN_TO_FIELD.get(column, column): value for column, value in row.items()}
