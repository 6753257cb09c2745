"""
Flask Application WSGI Entry Point

Exposes ``application`` for Gunicorn and runs the Flask development server
when executed directly.

Usage Examples:
    # Production WSGI deployment
    gunicorn --config gunicorn.conf.py "app:application"

    # Development server
    export FLASK_ENV=development
    python app.py --port 5000
"""

import argparse
import os

from frontend_cache.app import create_app

# Primary entry point for Gunicorn
application = create_app()
app = application


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Front-end cache development server')
    parser.add_argument(
        '--host',
        default=os.getenv('FLASK_HOST', '127.0.0.1'),
        help='Development server host (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=int(os.getenv('FLASK_PORT', 5000)),
        help='Development server port (default: 5000)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        default=os.getenv('FLASK_DEBUG', 'False').lower() in ('true', '1', 'yes'),
        help='Enable debug mode (default: False)'
    )
    args = parser.parse_args()

    application.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
