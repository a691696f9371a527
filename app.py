import os
from datetime import datetime

import pytz
from dotenv import load_dotenv
from flask import Flask, request, jsonify, session

load_dotenv()

from models import db, User, TEMPLATE_MODELS
from recurrence import display_sort_key, expand_items, find_occurrence
from recurrence_router import (
    RecurrenceScopeRequired,
    SCOPE_ALL,
    edit_form_defaults,
    normalize_scope,
    route_delete,
    route_edit,
    route_toggle_complete,
    write_to_dict,
)
from services.exception_store import (
    apply_writes,
    create_template,
    load_exceptions,
    load_templates,
)
from services.validation_service import (
    KIND_PATHS,
    clean_template_payload,
    parse_day_value,
    parse_kinds,
    parse_window,
    validate_series_bounds,
)

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///planner.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'America/New_York')

db.init_app(app)

def get_current_user():
    """Resolve the current user from a shared API key + user id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id:
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int and api_key == shared_key:
            user = db.session.get(User, api_uid_int)
            if user:
                return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None

with app.app_context():
    db.create_all()


def _now_local():
    tz = pytz.timezone(app.config.get('DEFAULT_TIMEZONE', 'America/New_York'))
    return datetime.now(tz).replace(tzinfo=None)


def _load_occurrence(user, kind, template_id, occurrence_raw):
    """Occurrence an action targets, or None when the series has nothing on that date."""
    row = TEMPLATE_MODELS[kind].query.filter_by(id=template_id, user_id=user.id).first_or_404()
    template = row.to_template()
    day_value = template.anchor
    if occurrence_raw:
        day_value = parse_day_value(occurrence_raw)
        if not day_value:
            raise ValueError('Invalid occurrence date')
    exceptions = load_exceptions(user.id, parent_type=kind, parent_id=template.id)
    return find_occurrence(template, exceptions, day_value)


def _scope_required_response(exc):
    return jsonify({
        'scope_required': True,
        'action': exc.action,
        'message': str(exc),
    }), 409


@app.route('/api/users', methods=['POST'])
def create_user():
    data = request.json or {}
    username = (data.get('username') or '').strip()
    if not username:
        return jsonify({'error': 'Username is required'}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400
    user = User(username=username)
    db.session.add(user)
    db.session.commit()
    session['user_id'] = user.id
    session.permanent = True
    return jsonify(user.to_dict()), 201


@app.route('/api/set-user/<int:user_id>', methods=['POST'])
def set_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    session['user_id'] = user.id
    session.permanent = True
    return jsonify(user.to_dict())


@app.route('/api/current-user')
def current_user():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    return jsonify(user.to_dict())


@app.route('/api/occurrences')
def list_occurrences():
    """Expanded occurrences of every template inside [start, end), ordered for display."""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    try:
        start_day, end_day = parse_window(
            request.args.get('start'),
            request.args.get('end'),
            _now_local().date()
        )
        kinds = parse_kinds(request.args.get('kinds'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    templates = load_templates(user.id, kinds)
    exceptions = load_exceptions(user.id, start_day=start_day, end_day=end_day)
    occurrences = expand_items(templates, exceptions, start_day, end_day)
    occurrences.sort(key=display_sort_key)
    return jsonify({
        'start': start_day.isoformat(),
        'end': end_day.isoformat(),
        'occurrences': [occ.to_dict() for occ in occurrences]
    })


@app.route('/api/exceptions')
def list_exceptions():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    parent_type = request.args.get('parent_type') or None
    parent_id = request.args.get('parent_id', type=int)
    return jsonify(load_exceptions(user.id, parent_type=parent_type, parent_id=parent_id))


@app.route('/api/<kind_path>', methods=['GET', 'POST'])
def templates_collection(kind_path):
    kind = KIND_PATHS.get(kind_path)
    if not kind:
        return jsonify({'error': 'Unknown item type'}), 404
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    model = TEMPLATE_MODELS[kind]
    if request.method == 'GET':
        rows = model.query.filter_by(user_id=user.id).order_by(model.id.asc()).all()
        return jsonify([row.to_dict() for row in rows])

    data = request.json or {}
    try:
        values = clean_template_payload(kind, data)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    row = create_template(user.id, kind, values)
    return jsonify(row.to_dict()), 201


@app.route('/api/<kind_path>/<int:template_id>', methods=['PUT', 'DELETE'])
def template_detail(kind_path, template_id):
    """Edit or delete one occurrence or a whole series.

    Recurring items need `scope` ('this' or 'all'); without it the answer is a 409 asking
    the caller to choose. `occurrence_date` names the series date acted on and defaults
    to the template's own date.
    """
    kind = KIND_PATHS.get(kind_path)
    if not kind:
        return jsonify({'error': 'Unknown item type'}), 404
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = (request.json or {}) if request.method == 'PUT' else request.args
    try:
        occurrence = _load_occurrence(user, kind, template_id, data.get('occurrence_date'))
        if occurrence is None:
            return jsonify({'error': 'Occurrence not found'}), 404
        scope = normalize_scope(data.get('scope'))
        if request.method == 'DELETE':
            writes = route_delete(occurrence, scope)
        else:
            merged = dict(edit_form_defaults(occurrence))
            merged.update(data)
            recurring = occurrence.template.is_recurring
            values = clean_template_payload(kind, merged, check_series_bounds=not recurring)
            writes = route_edit(occurrence, values, scope)
            if recurring and scope == SCOPE_ALL:
                validate_series_bounds(kind, writes[0].payload)
        apply_writes(user.id, writes)
    except RecurrenceScopeRequired as exc:
        return _scope_required_response(exc)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    if request.method == 'DELETE':
        return '', 204

    refreshed = TEMPLATE_MODELS[kind].query.filter_by(id=template_id, user_id=user.id).first()
    return jsonify({
        'template': refreshed.to_dict() if refreshed else None,
        'writes': [write_to_dict(w) for w in writes]
    })


@app.route('/api/<kind_path>/<int:template_id>/toggle-complete', methods=['POST'])
def toggle_complete(kind_path, template_id):
    kind = KIND_PATHS.get(kind_path)
    if not kind:
        return jsonify({'error': 'Unknown item type'}), 404
    if kind == 'event':
        return jsonify({'error': 'Only to-dos and assignments can be completed'}), 400
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.json or {}
    try:
        occurrence = _load_occurrence(user, kind, template_id, data.get('occurrence_date'))
        if occurrence is None:
            return jsonify({'error': 'Occurrence not found'}), 404
        writes = route_toggle_complete(occurrence)
        apply_writes(user.id, writes)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    occurrence = _load_occurrence(user, kind, template_id, data.get('occurrence_date'))
    return jsonify({
        'occurrence': occurrence.to_dict() if occurrence else None,
        'writes': [write_to_dict(w) for w in writes]
    })


@app.route('/api/<kind_path>/<int:template_id>/form')
def template_form(kind_path, template_id):
    kind = KIND_PATHS.get(kind_path)
    if not kind:
        return jsonify({'error': 'Unknown item type'}), 404
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    try:
        occurrence = _load_occurrence(user, kind, template_id, request.args.get('occurrence_date'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    if occurrence is None:
        return jsonify({'error': 'Occurrence not found'}), 404
    return jsonify(edit_form_defaults(occurrence))


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
