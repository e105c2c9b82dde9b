"""
Migration: Consolidate legacy notice tables into the normalized schema.

Older deployments wrote the same notice data to several overlapping tables.
This copies what exists into the current tables:

1. notice_components      -> notices
2. served_notices         -> notices (rows not already copied)
3. case_service_records   -> notices (fills gaps by alert token id)
4. notices                -> cases (one per case number and server)
5. document_storage_v2    -> notice_blobs (PDF files and inline thumbnails)
6. notice_views           -> access_records (signed where the notice was accepted)

Every step is INSERT ... ON CONFLICT DO NOTHING or a gap-filling UPDATE, so
the script can be re-run safely. Legacy tables are left in place.
"""
import os

from sqlalchemy import create_engine, text

from blockserved.db.database import Base

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://localhost:5432/blockserved")

# Token ids were stored as text in the legacy tables
TOKEN_ID = "CASE WHEN {col} ~ '^[0-9]{{1,18}}$' THEN {col}::BIGINT END"


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def column_exists(conn, table_name: str, column_name: str) -> bool:
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.columns
            WHERE table_name = :table_name AND column_name = :column_name
        )
    """), {"table_name": table_name, "column_name": column_name})
    return result.fetchone()[0]


def col(conn, table_name: str, column_name: str, fallback: str = "NULL") -> str:
    """Qualified column reference, or fallback when the legacy table lacks it."""
    if column_exists(conn, table_name, column_name):
        return f"src.{column_name}"
    return fallback


def token_id(conn, table_name: str, column_name: str) -> str:
    if not column_exists(conn, table_name, column_name):
        return "NULL"
    return TOKEN_ID.format(col=f"src.{column_name}::TEXT")


# =================================================================
# Notices
# =================================================================

def copy_notice_components(conn) -> int:
    if not table_exists(conn, "notice_components"):
        print("notice_components not found, skipping")
        return 0
    t = "notice_components"
    result = conn.execute(text(f"""
        INSERT INTO notices (
            notice_id, case_number, alert_token_id, document_token_id,
            transaction_hash, chain_verified, recipient_address, server_address,
            notice_type, issuing_agency, ipfs_hash, encryption_key, page_count,
            accepted, accepted_at, dismissed, source, created_at, updated_at
        )
        SELECT
            src.notice_id::TEXT,
            COALESCE(src.case_number, 'UNKNOWN'),
            {token_id(conn, t, 'alert_token_id')},
            {token_id(conn, t, 'document_token_id')},
            {col(conn, t, 'transaction_hash')},
            FALSE,
            src.recipient_address,
            src.server_address,
            COALESCE(src.notice_type, 'Legal Notice'),
            {col(conn, t, 'issuing_agency')},
            {col(conn, t, 'ipfs_hash')},
            {col(conn, t, 'encryption_key')},
            {col(conn, t, 'page_count')},
            COALESCE({col(conn, t, 'status')} IN ('signed', 'accepted'), FALSE),
            NULL,
            FALSE,
            'api'::noticesource,
            COALESCE({col(conn, t, 'created_at')}, NOW()),
            COALESCE({col(conn, t, 'updated_at')}, NOW())
        FROM notice_components src
        WHERE src.notice_id IS NOT NULL
          AND src.recipient_address IS NOT NULL
          AND src.server_address IS NOT NULL
        ON CONFLICT (notice_id) DO NOTHING
    """))
    print(f"notice_components: {result.rowcount} notices copied")
    return result.rowcount


def copy_served_notices(conn) -> int:
    if not table_exists(conn, "served_notices"):
        print("served_notices not found, skipping")
        return 0
    t = "served_notices"
    result = conn.execute(text(f"""
        INSERT INTO notices (
            notice_id, case_number, alert_token_id, document_token_id,
            transaction_hash, chain_verified, recipient_address, server_address,
            notice_type, issuing_agency, ipfs_hash, encryption_key, page_count,
            accepted, accepted_at, dismissed, source, created_at, updated_at
        )
        SELECT
            src.notice_id::TEXT,
            COALESCE(src.case_number, 'UNKNOWN'),
            {token_id(conn, t, 'alert_id')},
            {token_id(conn, t, 'document_id')},
            {col(conn, t, 'transaction_hash')},
            FALSE,
            src.recipient_address,
            src.server_address,
            COALESCE(src.notice_type, 'Legal Notice'),
            {col(conn, t, 'issuing_agency')},
            {col(conn, t, 'ipfs_hash')},
            {col(conn, t, 'encryption_key')},
            {col(conn, t, 'page_count')},
            COALESCE({col(conn, t, 'accepted')}, FALSE),
            {col(conn, t, 'accepted_at')},
            FALSE,
            'api'::noticesource,
            COALESCE({col(conn, t, 'created_at')}, NOW()),
            COALESCE({col(conn, t, 'updated_at')}, NOW())
        FROM served_notices src
        WHERE src.notice_id IS NOT NULL
          AND src.recipient_address IS NOT NULL
          AND src.server_address IS NOT NULL
          AND NOT EXISTS (
              SELECT 1 FROM notices n
              WHERE n.alert_token_id IS NOT NULL
                AND n.alert_token_id = {token_id(conn, t, 'alert_id')}
          )
        ON CONFLICT (notice_id) DO NOTHING
    """))
    print(f"served_notices: {result.rowcount} notices copied")
    return result.rowcount


def merge_case_service_records(conn) -> int:
    """Only fills columns that are still empty on notices with the same alert token."""
    if not table_exists(conn, "case_service_records"):
        print("case_service_records not found, skipping")
        return 0
    t = "case_service_records"
    result = conn.execute(text(f"""
        UPDATE notices n SET
            transaction_hash = COALESCE(n.transaction_hash, {col(conn, t, 'transaction_hash')}),
            document_token_id = COALESCE(n.document_token_id, {token_id(conn, t, 'document_token_id')}),
            ipfs_hash = COALESCE(n.ipfs_hash, {col(conn, t, 'ipfs_hash')}),
            encryption_key = COALESCE(n.encryption_key, {col(conn, t, 'encryption_key')}),
            page_count = COALESCE(n.page_count, {col(conn, t, 'page_count')}),
            updated_at = NOW()
        FROM case_service_records src
        WHERE n.alert_token_id = {token_id(conn, t, 'alert_token_id')}
          AND (
              (n.transaction_hash IS NULL AND {col(conn, t, 'transaction_hash')} IS NOT NULL)
              OR (n.ipfs_hash IS NULL AND {col(conn, t, 'ipfs_hash')} IS NOT NULL)
              OR (n.encryption_key IS NULL AND {col(conn, t, 'encryption_key')} IS NOT NULL)
          )
    """))
    print(f"case_service_records: {result.rowcount} notices updated")
    return result.rowcount


# =================================================================
# Cases
# =================================================================

def build_cases(conn) -> int:
    result = conn.execute(text("""
        INSERT INTO cases (case_number, server_address, server_key, status, created_at, updated_at)
        SELECT DISTINCT ON (n.case_number, LOWER(n.server_address))
            n.case_number, n.server_address, LOWER(n.server_address),
            'served'::casestatus, MIN(n.created_at) OVER w, NOW()
        FROM notices n
        WINDOW w AS (PARTITION BY n.case_number, LOWER(n.server_address))
        ORDER BY n.case_number, LOWER(n.server_address), n.created_at
        ON CONFLICT (case_number, server_key) DO NOTHING
    """))
    print(f"cases: {result.rowcount} created from notices")
    return result.rowcount


# =================================================================
# Blobs
# =================================================================

def copy_document_storage(conn) -> int:
    if not table_exists(conn, "document_storage_v2"):
        print("document_storage_v2 not found, skipping")
        return 0
    t = "document_storage_v2"
    files = conn.execute(text(f"""
        INSERT INTO notice_blobs (
            notice_id, kind, storage_type, file_name, file_path, original_name,
            mime_type, size_bytes, created_at
        )
        SELECT
            src.notice_id::TEXT,
            'document_full'::blobkind,
            (CASE WHEN {col(conn, t, 'storage_type', "'disk'")} = 'local' THEN 'local' ELSE 'disk' END)::storagetype,
            src.file_name,
            src.file_path,
            {col(conn, t, 'original_name')},
            'application/pdf',
            COALESCE({col(conn, t, 'file_size')}, 0),
            COALESCE({col(conn, t, 'created_at')}, NOW())
        FROM document_storage_v2 src
        WHERE src.file_name IS NOT NULL
        ON CONFLICT (file_name) DO NOTHING
    """))
    print(f"document_storage_v2: {files.rowcount} document files registered")

    thumbnails = 0
    if column_exists(conn, t, "thumbnail_data"):
        result = conn.execute(text("""
            INSERT INTO notice_blobs (
                notice_id, kind, storage_type, inline_data, mime_type, size_bytes, created_at
            )
            SELECT
                src.notice_id::TEXT,
                'alert_thumbnail'::blobkind,
                'inline'::storagetype,
                REGEXP_REPLACE(src.thumbnail_data, '^data:[^,]*,', ''),
                COALESCE(SUBSTRING(src.thumbnail_data FROM '^data:([^;,]+)'), 'image/png'),
                LENGTH(src.thumbnail_data) * 3 / 4,
                NOW()
            FROM document_storage_v2 src
            WHERE src.thumbnail_data IS NOT NULL AND src.thumbnail_data <> ''
              AND NOT EXISTS (
                  SELECT 1 FROM notice_blobs b
                  WHERE b.notice_id = src.notice_id::TEXT AND b.kind = 'alert_thumbnail'::blobkind
              )
        """))
        thumbnails = result.rowcount
        print(f"document_storage_v2: {thumbnails} thumbnails copied inline")
    return files.rowcount + thumbnails


# =================================================================
# Access records
# =================================================================

def copy_notice_views(conn) -> int:
    if not table_exists(conn, "notice_views"):
        print("notice_views not found, skipping")
        return 0
    t = "notice_views"
    result = conn.execute(text(f"""
        INSERT INTO access_records (
            notice_id, wallet_address, wallet_key, status, viewed_at, ip_address, user_agent
        )
        SELECT
            n.notice_id,
            src.wallet_address,
            LOWER(src.wallet_address),
            'viewed'::accessstatus,
            COALESCE({col(conn, t, 'viewed_at')}, {col(conn, t, 'created_at')}, NOW()),
            {col(conn, t, 'ip_address')},
            {col(conn, t, 'user_agent')}
        FROM notice_views src
        JOIN notices n
          ON n.notice_id = src.notice_id::TEXT
          OR n.alert_token_id = {TOKEN_ID.format(col="src.notice_id::TEXT")}
        WHERE src.wallet_address IS NOT NULL
          AND LOWER(src.wallet_address) = LOWER(n.recipient_address)
        ON CONFLICT (notice_id, wallet_key) DO NOTHING
    """))
    print(f"notice_views: {result.rowcount} access records created")

    signed = conn.execute(text("""
        UPDATE access_records r SET
            status = 'signed'::accessstatus,
            signed_at = COALESCE(n.accepted_at, r.viewed_at),
            signature = n.acceptance_signature
        FROM notices n
        WHERE r.notice_id = n.notice_id
          AND r.wallet_key = LOWER(n.recipient_address)
          AND n.accepted = TRUE
          AND r.status = 'viewed'::accessstatus
    """))
    print(f"notice_views: {signed.rowcount} access records marked signed")
    return result.rowcount


def run_migration():
    """Copy legacy rows into the normalized tables."""
    engine = create_engine(DATABASE_URL)

    # Target tables must exist before copying
    from blockserved.db import models  # noqa: F401
    Base.metadata.create_all(bind=engine)

    with engine.connect() as conn:
        copy_notice_components(conn)
        copy_served_notices(conn)
        merge_case_service_records(conn)
        build_cases(conn)
        copy_document_storage(conn)
        copy_notice_views(conn)
        conn.commit()

    print("Migration complete!")


if __name__ == "__main__":
    run_migration()
