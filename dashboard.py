"""Dashboard figures computed from full complaint/document collections."""
from datetime import datetime, timedelta, timezone

from workflow import ComplaintStatus, DocumentStatus

DEFAULT_WINDOW_DAYS = 7


def _as_utc(value):
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _count_statuses(rows):
    counts = {}
    for row in rows:
        s = row.get('status')
        counts[s] = counts.get(s, 0) + 1
    return counts


def count_open_complaints(complaints):
    return sum(1 for c in complaints if c.get('status') != ComplaintStatus.RESOLVED.value)


def count_pending_documents(document_requests):
    return sum(1 for d in document_requests if d.get('status') == DocumentStatus.PENDING.value)


def count_resolved_since(complaints, since):
    total = 0
    for c in complaints:
        if c.get('status') != ComplaintStatus.RESOLVED.value:
            continue
        updated_at = _as_utc(c.get('updated_at'))
        if updated_at is not None and updated_at >= since:
            total += 1
    return total


def aggregate_dashboard_stats(complaints, document_requests, profile_count, now=None,
                              window_days=DEFAULT_WINDOW_DAYS):
    now = _as_utc(now) or datetime.now(timezone.utc)
    since = now - timedelta(days=window_days)
    complaint_counts = _count_statuses(complaints)
    document_counts = _count_statuses(document_requests)

    return {
        'open_complaints': count_open_complaints(complaints),
        'pending_documents': count_pending_documents(document_requests),
        'resolved_this_week': count_resolved_since(complaints, since),
        'registered_citizens': int(profile_count or 0),
        'complaint_status_counts': {s.value: complaint_counts.get(s.value, 0) for s in ComplaintStatus},
        'document_status_counts': {s.value: document_counts.get(s.value, 0) for s in DocumentStatus},
        'window_days': window_days,
        'generated_at': now.isoformat(),
    }


def build_kpi_cards(stats):
    return [
        {'label': 'Open Complaints', 'value': stats['open_complaints'], 'metric': 'open_complaints', 'style': 'stat-warning'},
        {'label': 'Pending Documents', 'value': stats['pending_documents'], 'metric': 'pending_documents', 'style': 'stat-info'},
        {'label': 'Resolved This Week', 'value': stats['resolved_this_week'], 'metric': 'resolved_this_week', 'style': 'stat-success'},
        {'label': 'Registered Citizens', 'value': stats['registered_citizens'], 'metric': 'registered_citizens', 'style': 'stat-primary'},
    ]
