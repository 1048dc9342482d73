import os

from pos_server import create_app


if __name__ == '__main__':
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    port = int(os.getenv('PORT', '5000'))
    host = os.getenv('HOST', '127.0.0.1')
    app = create_app()
    session = app.config['POS_SESSION']
    try:
        # the reloader would start a second poller
        app.run(host=host, port=port, debug=debug, use_reloader=False)
    finally:
        session.logout()
