from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

import pos_config
from pos_session import NotLoggedIn, PosSession
from pos_transport import BusinessError, InvalidResponse, NetworkError, ValidationError

logger = logging.getLogger(__name__)


def _error(message: str, status: int):
    return jsonify({'status': 'error', 'message': message}), status


def _session() -> PosSession:
    return current_app.config['POS_SESSION']


def _json_body() -> dict:
    data = request.get_json(silent=True, force=True)
    return data if isinstance(data, dict) else {}


def create_app(session: Optional[PosSession] = None) -> Flask:
    """Local JSON front for the till; one operator session per process."""
    app = Flask(__name__)
    if session is None:
        settings = pos_config.load_settings()
        pos_config.configure_logging(settings.log_level)
        session = PosSession(settings)
    app.config['POS_SESSION'] = session

    @app.errorhandler(ValidationError)
    def _validation_failed(exc):
        return _error(str(exc), 400)

    @app.errorhandler(NotLoggedIn)
    def _not_logged_in(exc):
        return _error(str(exc), 401)

    @app.errorhandler(PermissionError)
    def _forbidden(exc):
        return _error(str(exc), 403)

    @app.errorhandler(BusinessError)
    def _rejected(exc):
        return _error(exc.message, 409)

    @app.errorhandler(NetworkError)
    def _unreachable(exc):
        return _error(f'Connection error: {exc.message}', 502)

    @app.errorhandler(InvalidResponse)
    def _bad_upstream(exc):
        app.logger.warning('Invalid upstream response for %s: %s', exc.action, exc.body)
        return _error('The server returned an invalid response', 502)

    @app.errorhandler(Exception)
    def _unexpected(exc):
        if isinstance(exc, HTTPException):
            return _error(exc.description or exc.name, exc.code or 500)
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _error('Internal error', 500)

    # Views read the live cache; never let the browser keep a stale copy
    @app.after_request
    def add_no_cache_headers(response):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        return response

    @app.route('/')
    def index():
        sess = _session()
        if sess.needs_setup:
            screen = 'setup'
        elif not sess.logged_in:
            screen = 'login'
        else:
            screen = 'app'
        return jsonify({'status': 'success', 'configured': not sess.needs_setup, 'screen': screen})

    @app.route('/api/setup', methods=['POST'])
    def api_setup():
        try:
            url = _session().configure_endpoint(_json_body().get('url'))
        except ValueError as exc:
            return _error(str(exc), 400)
        return jsonify({'status': 'success', 'url': url})

    @app.route('/api/login', methods=['POST'])
    def api_login():
        data = _json_body()
        result = _session().login(str(data.get('username') or ''), str(data.get('password') or ''))
        return jsonify({'status': 'success', **result})

    @app.route('/api/logout', methods=['POST'])
    def api_logout():
        _session().logout()
        return jsonify({'status': 'success'})

    @app.route('/api/views')
    def api_views():
        sess = _session()
        return jsonify({
            'status': 'success',
            'views': sorted(sess.allowed_views()),
            'active': sess.views.active,
        })

    @app.route('/api/views/<view_id>')
    def api_show_view(view_id: str):
        return jsonify({'status': 'success', 'view': _session().show_view(view_id)})

    @app.route('/api/cart')
    def api_cart():
        sess = _session()
        if not sess.logged_in:
            raise NotLoggedIn('Not logged in')
        return jsonify({'status': 'success', 'cart': sess.cart_view()})

    @app.route('/api/cart', methods=['POST'])
    def api_cart_add():
        data = _json_body()
        quantity = data.get('quantity', 1)
        if not isinstance(quantity, int):
            try:
                quantity = int(str(quantity))
            except ValueError:
                return _error('Quantity must be a positive integer', 400)
        cart = _session().add_to_cart(data.get('product_id'), quantity)
        return jsonify({'status': 'success', 'cart': cart})

    @app.route('/api/orders', methods=['POST'])
    def api_submit_order():
        result = _session().submit_order(_json_body().get('table_number'))
        return jsonify({'status': 'success', 'message': 'Order sent to kitchen', 'result': result})

    @app.route('/api/actions/<action>', methods=['POST'])
    def api_action(action: str):
        result = _session().mutate(action, _json_body())
        return jsonify({'status': 'success', 'result': result})

    @app.route('/api/query/<action>')
    def api_query(action: str):
        data = _session().query(action, request.args.to_dict())
        return jsonify({'status': 'success', 'data': data})

    @app.route('/api/sync/status')
    def api_sync_status():
        return jsonify({'status': 'success', 'sync': _session().sync_status()})

    return app
