import logging
from contextlib import contextmanager
from uuid import UUID, uuid4

import psycopg2
import psycopg2.extras
from werkzeug.security import generate_password_hash, check_password_hash

import dashboard
import realtime
import workflow
from config import Config
from errors import (
    ConcurrentUpdate, NotFound, ProfileFetchError, StoreUnavailable, ValidationFailed
)
from realtime import ChangeEvent, ChangeKind, ChangeTable

config = Config()
logger = logging.getLogger(__name__)

STORE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)

SCHEMA_STATEMENTS = [
    """
    DO $$ BEGIN
        CREATE TYPE user_role AS ENUM ('citizen', 'staff', 'admin');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE TYPE complaint_status AS ENUM ('pending', 'in-progress', 'resolved', 'rejected', 'verified');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE TYPE document_status AS ENUM ('pending', 'verified', 'approved', 'rejected');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    DO $$ BEGIN
        CREATE TYPE document_type AS ENUM ('birth', 'death', 'marriage', 'income', 'residence', 'other');
    EXCEPTION WHEN duplicate_object THEN NULL; END $$
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_identities (
        id TEXT PRIMARY KEY,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        user_metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_sign_in_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY REFERENCES auth_identities(id),
        name VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL UNIQUE,
        role user_role NOT NULL DEFAULT 'citizen',
        phone VARCHAR(30),
        address TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS staff (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE REFERENCES profiles(id),
        position VARCHAR(120) NOT NULL,
        department VARCHAR(120) NOT NULL,
        supervisor_id TEXT REFERENCES profiles(id),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS complaints (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES profiles(id),
        title VARCHAR(200) NOT NULL,
        description TEXT NOT NULL,
        category VARCHAR(80) NOT NULL,
        location TEXT,
        status complaint_status NOT NULL DEFAULT 'pending',
        assigned_to TEXT REFERENCES profiles(id),
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY,
        complaint_id TEXT NOT NULL REFERENCES complaints(id),
        user_id TEXT NOT NULL REFERENCES profiles(id),
        text TEXT NOT NULL,
        is_staff BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_requests (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES profiles(id),
        document_type document_type NOT NULL,
        purpose TEXT NOT NULL,
        additional_notes TEXT,
        attachments TEXT[] NOT NULL CHECK (cardinality(attachments) >= 1),
        form_details JSONB NOT NULL DEFAULT '{}'::jsonb,
        status document_status NOT NULL DEFAULT 'pending',
        verified_by TEXT REFERENCES profiles(id),
        approved_by TEXT REFERENCES profiles(id),
        rejection_reason TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS announcements (
        id TEXT PRIMARY KEY,
        title VARCHAR(200) NOT NULL,
        content TEXT NOT NULL,
        category VARCHAR(40) NOT NULL,
        important BOOLEAN NOT NULL DEFAULT FALSE,
        created_by TEXT REFERENCES profiles(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_complaints_user_created ON complaints (user_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_complaints_status_updated ON complaints (status, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_document_requests_user_created ON document_requests (user_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_document_requests_status ON document_requests (status)",
    "CREATE INDEX IF NOT EXISTS idx_comments_complaint_created ON comments (complaint_id, created_at)",
]


def ensure_schema_updates():
    """Create enum types, tables and indexes that do not exist yet."""
    try:
        conn = psycopg2.connect(**config.get_psycopg2_kwargs())
    except STORE_ERRORS as e:
        logger.exception("Schema bootstrap could not reach the database")
        raise StoreUnavailable('Database is unreachable.') from e
    conn.autocommit = True
    try:
        cur = dict_cursor(conn)
        for statement in SCHEMA_STATEMENTS:
            cur.execute(statement)
    finally:
        conn.close()

def get_db():
    """Get database connection"""
    try:
        conn = psycopg2.connect(**config.get_psycopg2_kwargs())
    except STORE_ERRORS as e:
        logger.exception("Database connection failed")
        raise StoreUnavailable('Database is unreachable.') from e
    conn.autocommit = False
    return conn

def dict_cursor(conn):
    return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


@contextmanager
def transaction():
    conn = get_db()
    try:
        cur = dict_cursor(conn)
        yield cur
        conn.commit()
    except STORE_ERRORS as e:
        try:
            conn.rollback()
        except STORE_ERRORS:
            logger.warning("Rollback failed on a broken connection")
        logger.exception("Database operation failed")
        raise StoreUnavailable('Database operation failed. Please try again.') from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _emit(cur, table, kind, row_id, owner_id=None):
    event = ChangeEvent.create(table, kind, row_id, owner_id)
    realtime.pg_notify(cur, config.REALTIME_CHANNEL, event)
    return event


def _publish(*events):
    for event in events:
        realtime.notifier.publish(event)


def _new_id():
    return str(uuid4())


def _is_valid_id(value):
    try:
        UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def _row(result):
    return dict(result) if result else None

# ========================================
# IDENTITY OPERATIONS
# ========================================

def get_identity_by_id(identity_id):
    with transaction() as cur:
        cur.execute("SELECT id, email, user_metadata, created_at, last_sign_in_at FROM auth_identities WHERE id = %s", (identity_id,))
        return _row(cur.fetchone())

def get_identity_by_email(email):
    with transaction() as cur:
        cur.execute("SELECT * FROM auth_identities WHERE email = %s", ((email or '').strip().lower(),))
        return _row(cur.fetchone())

def authenticate_identity(email, password):
    identity = get_identity_by_email(email)
    if not identity or not check_password_hash(identity['password_hash'], password):
        return None
    with transaction() as cur:
        cur.execute("UPDATE auth_identities SET last_sign_in_at = NOW() WHERE id = %s", (identity['id'],))
    identity.pop('password_hash', None)
    return identity

def register_account(email, password, metadata):
    """Create an identity and its profile in one transaction."""
    email = email.strip().lower()
    metadata = dict(metadata or {})
    identity_id = _new_id()
    role = _metadata_role(metadata)
    try:
        with transaction() as cur:
            cur.execute("SELECT id FROM auth_identities WHERE email = %s", (email,))
            if cur.fetchone():
                raise ValidationFailed('An account with this email already exists.',
                                       fields={'email': 'Email is already registered'})
            cur.execute("""
                INSERT INTO auth_identities (id, email, password_hash, user_metadata)
                VALUES (%s, %s, %s, %s)
            """, (identity_id, email, generate_password_hash(password), psycopg2.extras.Json(metadata)))
            cur.execute("""
                INSERT INTO profiles (id, name, email, role, phone, address)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
            """, (identity_id, metadata.get('name') or email.split('@')[0], email, role,
                  metadata.get('phone'), metadata.get('address')))
            profile = _row(cur.fetchone())
            event = _emit(cur, ChangeTable.PROFILES, ChangeKind.INSERT, identity_id, identity_id)
    except psycopg2.IntegrityError as e:
        raise ValidationFailed('An account with this email already exists.',
                               fields={'email': 'Email is already registered'}) from e
    _publish(event)
    logger.info("Registered account %s with role %s", identity_id, role)
    return profile

# ========================================
# PROFILE OPERATIONS
# ========================================

def _metadata_role(metadata):
    role = (metadata or {}).get('role')
    try:
        return workflow.Role(role).value
    except ValueError:
        return workflow.Role.CITIZEN.value

def get_profile_by_id(profile_id):
    with transaction() as cur:
        cur.execute("SELECT * FROM profiles WHERE id = %s", (profile_id,))
        return _row(cur.fetchone())

def create_profile(profile_id, email, name=None, role='citizen', phone=None, address=None):
    """Insert a profile once; a concurrent insert for the same id returns the stored row."""
    with transaction() as cur:
        cur.execute("""
            INSERT INTO profiles (id, name, email, role, phone, address)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            RETURNING *
        """, (profile_id, name or email.split('@')[0], email, role, phone, address))
        created = cur.fetchone()
        if created:
            event = _emit(cur, ChangeTable.PROFILES, ChangeKind.INSERT, profile_id, profile_id)
        else:
            event = None
            cur.execute("SELECT * FROM profiles WHERE id = %s", (profile_id,))
            created = cur.fetchone()
    _publish(event)
    return _row(created)

def ensure_profile(identity):
    """Return the identity's profile, creating the default one if it is missing."""
    try:
        profile = get_profile_by_id(identity['id'])
        if profile:
            return profile
        metadata = identity.get('user_metadata') or {}
        logger.info("Creating missing profile for %s", identity['id'])
        return create_profile(
            identity['id'],
            identity['email'],
            name=metadata.get('name'),
            role=_metadata_role(metadata),
            phone=metadata.get('phone'),
            address=metadata.get('address'),
        )
    except StoreUnavailable as e:
        raise ProfileFetchError('Unable to load your profile. Please sign in again.') from e

def load_session_profile(principal_id):
    """Profile for a resumed session, or None when the identity no longer exists."""
    try:
        profile = get_profile_by_id(principal_id)
        if profile:
            return profile
        identity = get_identity_by_id(principal_id)
    except StoreUnavailable as e:
        raise ProfileFetchError('Unable to load your profile. Please sign in again.') from e
    if not identity:
        return None
    return ensure_profile(identity)

def update_profile_info(profile_id, name, phone=None, address=None):
    with transaction() as cur:
        cur.execute("""
            UPDATE profiles
            SET name = %s, phone = %s, address = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING *
        """, (name, phone, address, profile_id))
        profile = _row(cur.fetchone())
        if not profile:
            raise NotFound('Profile not found.')
        event = _emit(cur, ChangeTable.PROFILES, ChangeKind.UPDATE, profile_id, profile_id)
    _publish(event)
    return profile

# ========================================
# STAFF MANAGEMENT
# ========================================

def get_staff_members():
    with transaction() as cur:
        cur.execute("""
            SELECT s.*, p.name, p.email, p.phone, p.address, p.role
            FROM staff s
            JOIN profiles p ON p.id = s.user_id
            ORDER BY s.joined_at DESC
        """)
        return [dict(row) for row in cur.fetchall()]

def add_staff_member(admin_id, email, position, department):
    with transaction() as cur:
        cur.execute("SELECT id, role FROM profiles WHERE email = %s", (email.strip().lower(),))
        profile = cur.fetchone()
        if not profile:
            raise NotFound('User with this email does not exist. Ask them to create an account first.')

        cur.execute("SELECT id FROM staff WHERE user_id = %s", (profile['id'],))
        if cur.fetchone():
            raise ValidationFailed('This user is already a staff member',
                                   fields={'email': 'This user is already a staff member'})

        events = []
        if profile['role'] not in (workflow.Role.STAFF.value, workflow.Role.ADMIN.value):
            cur.execute("UPDATE profiles SET role = 'staff', updated_at = NOW() WHERE id = %s", (profile['id'],))
            events.append(_emit(cur, ChangeTable.PROFILES, ChangeKind.UPDATE, profile['id'], profile['id']))

        staff_id = _new_id()
        cur.execute("""
            INSERT INTO staff (id, user_id, position, department, supervisor_id)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
        """, (staff_id, profile['id'], position, department, admin_id))
        member = _row(cur.fetchone())
        events.append(_emit(cur, ChangeTable.STAFF, ChangeKind.INSERT, staff_id, profile['id']))
    _publish(*events)
    logger.info("Admin %s added staff member %s (%s)", admin_id, profile['id'], department)
    return member

def toggle_staff_status(staff_id):
    with transaction() as cur:
        cur.execute("""
            UPDATE staff SET is_active = NOT is_active
            WHERE id = %s
            RETURNING *
        """, (staff_id,))
        member = _row(cur.fetchone())
        if not member:
            raise NotFound('Staff member not found.')
        event = _emit(cur, ChangeTable.STAFF, ChangeKind.UPDATE, staff_id, member['user_id'])
    _publish(event)
    return member

def remove_staff_member(staff_id):
    """Delete the staff record and demote a staff profile to citizen; admins keep their role."""
    with transaction() as cur:
        cur.execute("DELETE FROM staff WHERE id = %s RETURNING user_id", (staff_id,))
        removed = cur.fetchone()
        if not removed:
            raise NotFound('Staff member not found.')
        user_id = removed['user_id']
        cur.execute("""
            UPDATE profiles SET role = 'citizen', updated_at = NOW()
            WHERE id = %s AND role = 'staff'
            RETURNING id
        """, (user_id,))
        demoted = cur.fetchone() is not None
        events = [_emit(cur, ChangeTable.STAFF, ChangeKind.DELETE, staff_id, user_id)]
        if demoted:
            events.append(_emit(cur, ChangeTable.PROFILES, ChangeKind.UPDATE, user_id, user_id))
    _publish(*events)
    logger.info("Removed staff member %s (profile %s demoted: %s)", staff_id, user_id, demoted)
    return user_id

# ========================================
# COMPLAINT OPERATIONS
# ========================================

COMPLAINT_SELECT = """
    SELECT c.*,
        u1.name AS user_name,
        u2.name AS assigned_to_name
    FROM complaints c
    LEFT JOIN profiles u1 ON c.user_id = u1.id
    LEFT JOIN profiles u2 ON c.assigned_to = u2.id
"""

def create_complaint(owner_id, title, description, category, location=None):
    complaint_id = _new_id()
    with transaction() as cur:
        cur.execute("""
            INSERT INTO complaints (id, user_id, title, description, category, location, status)
            VALUES (%s, %s, %s, %s, %s, %s, 'pending')
            RETURNING *
        """, (complaint_id, owner_id, title, description, category, location))
        complaint = _row(cur.fetchone())
        event = _emit(cur, ChangeTable.COMPLAINTS, ChangeKind.INSERT, complaint_id, owner_id)
    _publish(event)
    logger.info("Complaint %s created by %s", complaint_id, owner_id)
    return complaint

def get_complaint_by_id(complaint_id):
    if not _is_valid_id(complaint_id):
        return None
    with transaction() as cur:
        cur.execute(COMPLAINT_SELECT + " WHERE c.id = %s", (complaint_id,))
        return _row(cur.fetchone())

def get_complaints_for_user(actor, status_filter=None):
    """Citizens see their own complaints; staff and admin see every complaint."""
    conditions = []
    params = []
    if not actor.is_staff:
        conditions.append("c.user_id = %s")
        params.append(actor.id)
    if status_filter and status_filter != 'all':
        conditions.append("c.status = %s")
        params.append(status_filter)

    query = COMPLAINT_SELECT
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY c.created_at DESC"
    with transaction() as cur:
        cur.execute(query, params)
        return [dict(row) for row in cur.fetchall()]

def transition_complaint(complaint_id, actor, action, expected_version=None):
    workflow.require_staff(actor, action)
    if not _is_valid_id(complaint_id):
        raise NotFound('Complaint not found.')
    with transaction() as cur:
        cur.execute("SELECT * FROM complaints WHERE id = %s FOR UPDATE", (complaint_id,))
        complaint = _row(cur.fetchone())
        if not complaint:
            raise NotFound('Complaint not found.')
        if expected_version is not None and complaint.get('version') != expected_version:
            raise ConcurrentUpdate('Complaint was changed by someone else. Reload and try again.')

        updates = workflow.plan_complaint_transition(complaint, actor, action)
        cur.execute("""
            UPDATE complaints
            SET status = %s,
                assigned_to = COALESCE(%s, assigned_to),
                version = version + 1,
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
        """, (updates['status'], updates.get('assigned_to'), complaint_id))
        updated = _row(cur.fetchone())
        event = _emit(cur, ChangeTable.COMPLAINTS, ChangeKind.UPDATE, complaint_id, complaint['user_id'])
    _publish(event)
    logger.info(
        "Complaint %s: %s -> %s by %s (%s)",
        complaint_id, complaint['status'], updates['status'], actor.id, actor.role.value
    )
    return updated

def get_complaint_comments(complaint_id):
    with transaction() as cur:
        cur.execute("""
            SELECT cm.*, p.name AS user_name
            FROM comments cm
            LEFT JOIN profiles p ON p.id = cm.user_id
            WHERE cm.complaint_id = %s
            ORDER BY cm.created_at ASC
        """, (complaint_id,))
        return [dict(row) for row in cur.fetchall()]

def add_complaint_comment(complaint_id, actor, text):
    comment_id = _new_id()
    with transaction() as cur:
        cur.execute("""
            INSERT INTO comments (id, complaint_id, user_id, text, is_staff)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
        """, (comment_id, complaint_id, actor.id, text, actor.is_staff))
        return _row(cur.fetchone())

# ========================================
# DOCUMENT REQUEST OPERATIONS
# ========================================

DOCUMENT_SELECT = """
    SELECT d.*,
        u1.name AS user_name,
        u2.name AS verified_by_name,
        u3.name AS approved_by_name
    FROM document_requests d
    LEFT JOIN profiles u1 ON d.user_id = u1.id
    LEFT JOIN profiles u2 ON d.verified_by = u2.id
    LEFT JOIN profiles u3 ON d.approved_by = u3.id
"""

def create_document_request(owner_id, document_type, purpose, attachments, form_details=None, additional_notes=None):
    attachments = [a for a in (attachments or []) if a]
    if not attachments:
        raise ValidationFailed('At least one supporting document is required.',
                               fields={'attachments': 'Please upload required documents'})
    try:
        document_type = workflow.DocumentType(document_type).value
    except ValueError:
        raise ValidationFailed('Please select a valid document type',
                               fields={'document_type': 'Please select a valid document type'})
    request_id = _new_id()
    with transaction() as cur:
        cur.execute("""
            INSERT INTO document_requests
                (id, user_id, document_type, purpose, additional_notes, attachments, form_details, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'pending')
            RETURNING *
        """, (
            request_id, owner_id, document_type, purpose, additional_notes,
            list(attachments), psycopg2.extras.Json(form_details or {})
        ))
        document_request = _row(cur.fetchone())
        event = _emit(cur, ChangeTable.DOCUMENT_REQUESTS, ChangeKind.INSERT, request_id, owner_id)
    _publish(event)
    logger.info("Document request %s (%s) created by %s", request_id, document_type, owner_id)
    return document_request

def get_document_request_by_id(request_id):
    if not _is_valid_id(request_id):
        return None
    with transaction() as cur:
        cur.execute(DOCUMENT_SELECT + " WHERE d.id = %s", (request_id,))
        return _row(cur.fetchone())

def get_document_requests_for_user(actor, status_filter=None):
    conditions = []
    params = []
    if not actor.is_staff:
        conditions.append("d.user_id = %s")
        params.append(actor.id)
    if status_filter and status_filter != 'all':
        conditions.append("d.status = %s")
        params.append(status_filter)

    query = DOCUMENT_SELECT
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY d.created_at DESC"
    with transaction() as cur:
        cur.execute(query, params)
        return [dict(row) for row in cur.fetchall()]

def transition_document_request(request_id, actor, action, rejection_reason=None, expected_version=None):
    workflow.require_staff(actor, action)
    if not _is_valid_id(request_id):
        raise NotFound('Document request not found.')
    with transaction() as cur:
        cur.execute("SELECT * FROM document_requests WHERE id = %s FOR UPDATE", (request_id,))
        document_request = _row(cur.fetchone())
        if not document_request:
            raise NotFound('Document request not found.')
        if expected_version is not None and document_request.get('version') != expected_version:
            raise ConcurrentUpdate('Document request was changed by someone else. Reload and try again.')

        updates = workflow.plan_document_transition(document_request, actor, action, rejection_reason)
        cur.execute("""
            UPDATE document_requests
            SET status = %s,
                verified_by = COALESCE(%s, verified_by),
                approved_by = COALESCE(%s, approved_by),
                rejection_reason = CASE WHEN %s = 'rejected' THEN %s ELSE rejection_reason END,
                version = version + 1,
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
        """, (
            updates['status'], updates.get('verified_by'), updates.get('approved_by'),
            updates['status'], updates.get('rejection_reason'), request_id
        ))
        updated = _row(cur.fetchone())
        event = _emit(cur, ChangeTable.DOCUMENT_REQUESTS, ChangeKind.UPDATE, request_id, document_request['user_id'])
    _publish(event)
    logger.info(
        "Document request %s: %s -> %s by %s (%s)",
        request_id, document_request['status'], updates['status'], actor.id, actor.role.value
    )
    return updated

# ========================================
# ANNOUNCEMENTS
# ========================================

def get_announcements(limit=None):
    query = "SELECT * FROM announcements ORDER BY important DESC, created_at DESC"
    params = []
    if limit:
        query += " LIMIT %s"
        params.append(int(limit))
    with transaction() as cur:
        cur.execute(query, params)
        return [dict(row) for row in cur.fetchall()]

def create_announcement(created_by, title, content, category, important=False):
    announcement_id = _new_id()
    with transaction() as cur:
        cur.execute("""
            INSERT INTO announcements (id, title, content, category, important, created_by)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (announcement_id, title, content, category, bool(important), created_by))
        announcement = _row(cur.fetchone())
        event = _emit(cur, ChangeTable.ANNOUNCEMENTS, ChangeKind.INSERT, announcement_id, created_by)
    _publish(event)
    return announcement

def update_announcement(announcement_id, title, content, category, important=False):
    if not _is_valid_id(announcement_id):
        raise NotFound('Announcement not found.')
    with transaction() as cur:
        cur.execute("""
            UPDATE announcements
            SET title = %s, content = %s, category = %s, important = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING *
        """, (title, content, category, bool(important), announcement_id))
        announcement = _row(cur.fetchone())
        if not announcement:
            raise NotFound('Announcement not found.')
        event = _emit(cur, ChangeTable.ANNOUNCEMENTS, ChangeKind.UPDATE, announcement_id, announcement.get('created_by'))
    _publish(event)
    return announcement

def delete_announcement(announcement_id):
    if not _is_valid_id(announcement_id):
        raise NotFound('Announcement not found.')
    with transaction() as cur:
        cur.execute("DELETE FROM announcements WHERE id = %s RETURNING id, created_by", (announcement_id,))
        removed = cur.fetchone()
        if not removed:
            raise NotFound('Announcement not found.')
        event = _emit(cur, ChangeTable.ANNOUNCEMENTS, ChangeKind.DELETE, announcement_id, removed.get('created_by'))
    _publish(event)

# ========================================
# TRACKING & DASHBOARD
# ========================================

def track_entity(kind, tracking_id):
    """Public status lookup by tracking id."""
    if not _is_valid_id(tracking_id):
        raise NotFound('No record matches this tracking ID.')
    if kind == 'complaint':
        query = """
            SELECT id, title, category, status, created_at, updated_at
            FROM complaints WHERE id = %s
        """
    elif kind == 'document':
        query = """
            SELECT id, document_type, status, rejection_reason, created_at, updated_at
            FROM document_requests WHERE id = %s
        """
    else:
        raise NotFound('Unknown tracking type.')
    with transaction() as cur:
        cur.execute(query, (tracking_id,))
        row = _row(cur.fetchone())
    if not row:
        raise NotFound('No record matches this tracking ID.')
    row['kind'] = kind
    return row

def get_dashboard_stats(now=None):
    """Recompute dashboard figures from the full collections."""
    with transaction() as cur:
        cur.execute("SELECT id, status, updated_at FROM complaints")
        complaints = [dict(row) for row in cur.fetchall()]
        cur.execute("SELECT id, status, updated_at FROM document_requests")
        document_requests = [dict(row) for row in cur.fetchall()]
        cur.execute("SELECT COUNT(*) AS c FROM profiles")
        row = cur.fetchone()
        profile_count = row['c'] if row else 0

    stats = dashboard.aggregate_dashboard_stats(
        complaints, document_requests, profile_count,
        now=now, window_days=config.RESOLVED_WINDOW_DAYS
    )
    stats['kpi_cards'] = dashboard.build_kpi_cards(stats)
    return stats
