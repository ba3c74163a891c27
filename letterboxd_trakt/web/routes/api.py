"""
API routes for Letterboxd Trakt Sync.
"""

from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from letterboxd_trakt.api.base import APIError, NotAuthenticatedError
from letterboxd_trakt.sync.importer import ImportFormatError, load_export
from letterboxd_trakt.sync.models import PassKind, SyncStatus
from letterboxd_trakt.sync.runner import PassAlreadyRunningError, PassRunner

api_bp = Blueprint('api', __name__, url_prefix='/api')


def _runner() -> PassRunner:
    return current_app.extensions['pass_runner']


def _access_token() -> Optional[str]:
    """Bearer token from the request, falling back to the configured one."""
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        token = header.split(' ', 1)[1].strip()
        if token:
            return token
    return _runner().config.trakt_access_token


@api_bp.route('/status')
def status():
    """Get pass status and record counts."""
    runner = _runner()
    return jsonify({
        'passes': runner.status(),
        'records': runner.store.status_counts(),
    })


@api_bp.route('/records')
def get_records():
    """Get imported records, optionally filtered by status."""
    status_filter = request.args.get('status')
    status_value = None
    if status_filter:
        try:
            status_value = SyncStatus(status_filter)
        except ValueError:
            return jsonify({'error': f'Unknown status: {status_filter}'}), 400

    records = _runner().store.list_records(status_value)
    return jsonify([r.to_dict() for r in records])


@api_bp.route('/records', methods=['DELETE'])
def clear_records():
    """Delete every imported record."""
    runner = _runner()
    if runner.is_running(PassKind.CHECK) or runner.is_running(PassKind.SYNC):
        return jsonify({'error': 'Cannot clear records while a pass is running'}), 409

    removed = runner.store.clear()
    return jsonify({'removed': removed})


@api_bp.route('/import', methods=['POST'])
def import_export():
    """Import a Letterboxd diary.csv or export zip, replacing existing records."""
    runner = _runner()
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return jsonify({'error': 'No file provided'}), 400
    if runner.is_running(PassKind.CHECK) or runner.is_running(PassKind.SYNC):
        return jsonify({'error': 'Cannot import while a pass is running'}), 409

    try:
        records = load_export(upload.stream, upload.filename)
    except ImportFormatError as e:
        return jsonify({'error': str(e)}), 400

    stored = runner.store.replace_all(records)
    return jsonify({'imported': len(stored)})


@api_bp.route('/check', methods=['POST'])
def start_check():
    """Start a check pass over all unchecked records."""
    token = _access_token()
    if not token:
        return jsonify({'error': 'Not authenticated'}), 401

    try:
        _runner().start_check(token)
    except PassAlreadyRunningError as e:
        return jsonify({'error': str(e)}), 409
    return jsonify({'started': True}), 202


@api_bp.route('/sync', methods=['POST'])
def start_sync():
    """Start a sync pass over the selected record ids."""
    token = _access_token()
    if not token:
        return jsonify({'error': 'Not authenticated'}), 401

    payload = request.get_json(silent=True) or {}
    ids = payload.get('ids')
    if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
        return jsonify({'error': 'Expected a JSON body with a list of record ids'}), 400

    try:
        _runner().start_sync(ids, token)
    except PassAlreadyRunningError as e:
        return jsonify({'error': str(e)}), 409
    return jsonify({'started': True, 'selected': len(ids)}), 202


@api_bp.route('/<kind>/cancel', methods=['POST'])
def cancel_pass(kind):
    """Cancel a running check or sync pass after its current record."""
    try:
        pass_kind = PassKind(kind)
    except ValueError:
        return jsonify({'error': f'Unknown pass: {kind}'}), 404

    return jsonify({'cancelled': _runner().cancel(pass_kind)})


@api_bp.route('/runs')
def get_runs():
    """Get recent passes."""
    limit = request.args.get('limit', 20, type=int)
    return jsonify(_runner().store.recent_runs(limit))


@api_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    return jsonify(_runner().store.recent_logs(limit, level))


@api_bp.route('/profile')
def get_profile():
    """Get the Trakt profile of the bearer token."""
    token = _access_token()
    if not token:
        return jsonify({'error': 'Not authenticated'}), 401

    runner = _runner()
    if runner.is_running(PassKind.CHECK) or runner.is_running(PassKind.SYNC):
        return jsonify({'error': 'A pass is running, try again when it finishes'}), 409

    client = runner.engine.trakt_client
    previous = client.access_token
    client.initialize(token)
    try:
        return jsonify(client.get_user_settings())
    except NotAuthenticatedError as e:
        return jsonify({'error': str(e)}), 401
    except APIError as e:
        return jsonify({'error': e.message}), e.status_code or 502
    finally:
        client.initialize(previous)
