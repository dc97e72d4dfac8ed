from flask import Flask, request, session, jsonify, g, Response
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException
from functools import wraps
from config import Config
from datetime import datetime, date
from enum import Enum
import json
import os

import models
import realtime
import validation
import workflow
from errors import (
    AuthenticationRequired, NotFound, PortalError, ProfileFetchError,
    StoreUnavailable, Unauthorized, ValidationFailed
)
from logger import init_logging
from workflow import ComplaintStatus, DocumentStatus, Role


class PortalJSONProvider(DefaultJSONProvider):
    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return DefaultJSONProvider.default(o)


config = Config()
app = Flask(__name__)
app.json_provider_class = PortalJSONProvider
app.json = PortalJSONProvider(app)
app.config['SECRET_KEY'] = config.SECRET_KEY
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['SESSION_COOKIE_SECURE'] = config.SESSION_COOKIE_SECURE

init_logging(app, log_dir=config.LOG_DIR, level_name=config.LOG_LEVEL)

if os.getenv('SKIP_SCHEMA_UPDATES') != '1':
    models.ensure_schema_updates()

STAFF_ROLE_VALUES = tuple(r.value for r in workflow.STAFF_ROLES)


def _payload():
    """Request body as a dict; JSON and form posts are both accepted."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    data = request.form.to_dict()
    if 'attachments' in request.form:
        data['attachments'] = request.form.getlist('attachments')
    raw_details = data.get('form_details')
    if isinstance(raw_details, str) and raw_details.strip():
        try:
            data['form_details'] = json.loads(raw_details)
        except ValueError:
            raise ValidationFailed('Form details are not valid JSON.',
                                   fields={'form_details': 'Invalid form details'})
    return data


def _status_filter(raw_value, status_enum):
    value = (raw_value or 'all').strip()
    if value == 'all':
        return None
    try:
        return status_enum(value).value
    except ValueError:
        raise ValidationFailed(f'Unknown status filter: {value}', fields={'status': 'Unknown status'})


def _with_complaint_actions(complaint):
    complaint['available_actions'] = workflow.available_complaint_actions(complaint.get('status'), g.actor.role)
    return complaint


def _with_document_actions(document_request):
    document_request['available_actions'] = workflow.available_document_actions(
        document_request.get('status'), g.actor.role
    )
    return document_request


def _load_visible_complaint(complaint_id):
    complaint = models.get_complaint_by_id(complaint_id)
    if not complaint:
        raise NotFound('Complaint not found.')
    workflow.ensure_can_view(g.actor, complaint)
    return complaint

# ========================================
# SESSION & AUTH DECORATORS
# ========================================

@app.before_request
def load_session_actor():
    g.profile = None
    g.actor = None
    user_id = session.get('user_id')
    if not user_id:
        return None
    try:
        profile = models.load_session_profile(user_id)
    except ProfileFetchError:
        app.logger.warning("Profile fetch failed for %s; signing the session out", user_id)
        session.clear()
        raise
    if not profile:
        app.logger.info("Session principal %s no longer exists; clearing session", user_id)
        session.clear()
        return None
    g.profile = profile
    g.actor = workflow.resolve_actor(user_id, profile)
    return None


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if g.get('actor') is None:
            raise AuthenticationRequired('Please sign in to continue.')
        return f(*args, **kwargs)
    return decorated

def role_required(*roles):
    allowed = {Role(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            actor = g.get('actor')
            if actor is None:
                raise AuthenticationRequired('Please sign in to continue.')
            if actor.role not in allowed:
                app.logger.warning(
                    "Refused %s %s for actor=%s role=%s",
                    request.method, request.path, actor.id, actor.role.value
                )
                raise Unauthorized('You do not have permission to access this resource.')
            return f(*args, **kwargs)
        return decorated
    return decorator

# ========================================
# ERROR HANDLERS
# ========================================

@app.errorhandler(PortalError)
def handle_portal_error(error):
    if error.status_code >= 500:
        app.logger.error("%s on %s %s: %s", error.code, request.method, request.path, error.message)
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    code = (error.name or 'error').lower().replace(' ', '_')
    return jsonify({'error': code, 'message': error.description}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'error': 'internal_error', 'message': 'Something went wrong. Please try again.'}), 500

# ========================================
# AUTH
# ========================================

@app.route('/auth/signup', methods=['POST'])
def signup():
    cleaned = validation.validate_signup(_payload(), allow_role=config.ALLOW_SIGNUP_ROLE)
    profile = models.register_account(cleaned['email'], cleaned['password'], cleaned['metadata'])
    session.clear()
    session['user_id'] = profile['id']
    return jsonify({'profile': profile}), 201


@app.route('/auth/login', methods=['POST'])
def login():
    cleaned = validation.validate_login(_payload())
    identity = models.authenticate_identity(cleaned['email'], cleaned['password'])
    if not identity:
        app.logger.info("Failed sign-in for %s", cleaned['email'])
        raise AuthenticationRequired('Invalid email or password.')
    profile = models.ensure_profile(identity)
    session.clear()
    session['user_id'] = identity['id']
    return jsonify({'profile': profile})


@app.route('/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'status': 'signed_out'})


@app.route('/auth/session')
def current_session():
    if g.actor is None:
        return jsonify({'authenticated': False, 'profile': None})
    return jsonify({'authenticated': True, 'profile': g.profile, 'role': g.actor.role.value})

# ========================================
# PROFILE
# ========================================

@app.route('/profile', methods=['GET', 'POST'])
@login_required
def profile():
    if request.method == 'GET':
        return jsonify({'profile': g.profile})
    cleaned = validation.validate_profile_update(_payload())
    updated = models.update_profile_info(g.actor.id, cleaned['name'], cleaned['phone'], cleaned['address'])
    return jsonify({'profile': updated})

# ========================================
# COMPLAINTS
# ========================================

@app.route('/complaints', methods=['GET'])
@login_required
def complaints_list():
    status_filter = _status_filter(request.args.get('status'), ComplaintStatus)
    complaints = models.get_complaints_for_user(g.actor, status_filter)
    return jsonify({'complaints': [_with_complaint_actions(c) for c in complaints]})


@app.route('/complaints', methods=['POST'])
@login_required
def complaint_new():
    cleaned = validation.validate_complaint_input(_payload())
    complaint = models.create_complaint(
        g.actor.id, cleaned['title'], cleaned['description'], cleaned['category'], cleaned['location']
    )
    return jsonify({'complaint': _with_complaint_actions(complaint)}), 201


@app.route('/complaints/<complaint_id>')
@login_required
def complaint_view(complaint_id):
    complaint = _load_visible_complaint(complaint_id)
    comments = models.get_complaint_comments(complaint_id)
    return jsonify({'complaint': _with_complaint_actions(complaint), 'comments': comments})


@app.route('/complaints/<complaint_id>/action', methods=['POST'])
@login_required
def complaint_action(complaint_id):
    data = _payload()
    expected_version = validation.parse_expected_version(data.get('expected_version'))
    complaint = models.transition_complaint(complaint_id, g.actor, data.get('action'), expected_version)
    return jsonify({'complaint': _with_complaint_actions(complaint)})


@app.route('/complaints/<complaint_id>/comments', methods=['GET', 'POST'])
@login_required
def complaint_comments(complaint_id):
    _load_visible_complaint(complaint_id)
    if request.method == 'GET':
        return jsonify({'comments': models.get_complaint_comments(complaint_id)})
    cleaned = validation.validate_comment(_payload())
    comment = models.add_complaint_comment(complaint_id, g.actor, cleaned['text'])
    return jsonify({'comment': comment}), 201

# ========================================
# DOCUMENT REQUESTS
# ========================================

@app.route('/documents', methods=['GET'])
@login_required
def documents_list():
    status_filter = _status_filter(request.args.get('status'), DocumentStatus)
    document_requests = models.get_document_requests_for_user(g.actor, status_filter)
    return jsonify({'document_requests': [_with_document_actions(d) for d in document_requests]})


@app.route('/documents', methods=['POST'])
@login_required
def document_new():
    cleaned = validation.validate_document_request_input(_payload(), max_attachments=config.MAX_ATTACHMENTS)
    document_request = models.create_document_request(
        g.actor.id,
        cleaned['document_type'],
        cleaned['purpose'],
        cleaned['attachments'],
        form_details=cleaned['form_details'],
        additional_notes=cleaned['additional_notes'],
    )
    return jsonify({'document_request': _with_document_actions(document_request)}), 201


@app.route('/documents/<request_id>')
@login_required
def document_view(request_id):
    document_request = models.get_document_request_by_id(request_id)
    if not document_request:
        raise NotFound('Document request not found.')
    workflow.ensure_can_view(g.actor, document_request)
    return jsonify({'document_request': _with_document_actions(document_request)})


@app.route('/documents/<request_id>/action', methods=['POST'])
@login_required
def document_action(request_id):
    data = _payload()
    expected_version = validation.parse_expected_version(data.get('expected_version'))
    document_request = models.transition_document_request(
        request_id,
        g.actor,
        data.get('action'),
        rejection_reason=data.get('rejection_reason'),
        expected_version=expected_version,
    )
    return jsonify({'document_request': _with_document_actions(document_request)})

# ========================================
# PUBLIC TRACKING
# ========================================

@app.route('/track/<kind>/<tracking_id>')
def track(kind, tracking_id):
    return jsonify({'record': models.track_entity(kind, tracking_id)})

# ========================================
# ANNOUNCEMENTS
# ========================================

@app.route('/announcements', methods=['GET'])
def announcements_list():
    limit = request.args.get('limit', type=int)
    return jsonify({'announcements': models.get_announcements(limit=limit if limit and limit > 0 else None)})


@app.route('/announcements', methods=['POST'])
@role_required(*STAFF_ROLE_VALUES)
def announcement_new():
    cleaned = validation.validate_announcement(_payload())
    announcement = models.create_announcement(
        g.actor.id, cleaned['title'], cleaned['content'], cleaned['category'], cleaned['important']
    )
    return jsonify({'announcement': announcement}), 201


@app.route('/announcements/<announcement_id>', methods=['POST'])
@role_required(*STAFF_ROLE_VALUES)
def announcement_edit(announcement_id):
    cleaned = validation.validate_announcement(_payload())
    announcement = models.update_announcement(
        announcement_id, cleaned['title'], cleaned['content'], cleaned['category'], cleaned['important']
    )
    return jsonify({'announcement': announcement})


@app.route('/announcements/<announcement_id>/delete', methods=['POST'])
@role_required(*STAFF_ROLE_VALUES)
def announcement_delete(announcement_id):
    models.delete_announcement(announcement_id)
    return jsonify({'deleted': announcement_id})

# ========================================
# STAFF MANAGEMENT
# ========================================

@app.route('/admin/staff', methods=['GET'])
@role_required('admin')
def staff_list():
    return jsonify({'staff': models.get_staff_members()})


@app.route('/admin/staff', methods=['POST'])
@role_required('admin')
def staff_add():
    cleaned = validation.validate_staff_input(_payload())
    member = models.add_staff_member(g.actor.id, cleaned['email'], cleaned['position'], cleaned['department'])
    return jsonify({'staff': member}), 201


@app.route('/admin/staff/<staff_id>/toggle', methods=['POST'])
@role_required('admin')
def staff_toggle(staff_id):
    return jsonify({'staff': models.toggle_staff_status(staff_id)})


@app.route('/admin/staff/<staff_id>/remove', methods=['POST'])
@role_required('admin')
def staff_remove(staff_id):
    user_id = models.remove_staff_member(staff_id)
    return jsonify({'removed': staff_id, 'user_id': user_id})

# ========================================
# API ENDPOINTS
# ========================================

@app.route('/api/stats')
@role_required(*STAFF_ROLE_VALUES)
def api_stats():
    return jsonify(models.get_dashboard_stats())


def _change_stream(subscription, keepalive_seconds):
    try:
        try:
            yield realtime.format_sse('ready', models.get_dashboard_stats())
        except StoreUnavailable as e:
            app.logger.warning("Could not load initial stats for change stream: %s", e.message)
            yield realtime.format_sse('error', e.to_dict())
        while True:
            event = subscription.get(timeout=keepalive_seconds)
            if event is None:
                yield ': keepalive\n\n'
                continue
            yield realtime.format_sse('change', event.to_dict())
            if event.affects_dashboard:
                try:
                    yield realtime.format_sse('stats', models.get_dashboard_stats())
                except StoreUnavailable as e:
                    app.logger.warning("Could not refresh stats after %s change: %s", event.table.value, e.message)
                    yield realtime.format_sse('error', e.to_dict())
    finally:
        subscription.close()


@app.route('/api/changes')
@role_required(*STAFF_ROLE_VALUES)
def api_changes():
    tables = None
    raw_tables = (request.args.get('tables') or '').strip()
    if raw_tables:
        try:
            tables = [realtime.ChangeTable(t.strip()) for t in raw_tables.split(',') if t.strip()]
        except ValueError:
            raise ValidationFailed('Unknown table in change filter.', fields={'tables': 'Unknown table'})

    subscription = realtime.Subscription(realtime.notifier, tables=tables)
    response = Response(
        _change_stream(subscription, config.REALTIME_KEEPALIVE_SECONDS),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
    response.call_on_close(subscription.close)
    return response

@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'}), 200

# ========================================
# RUN
# ========================================

if __name__ == '__main__':
    app.run(debug=config.DEBUG, host=config.HOST, port=config.PORT, threaded=True)
