"""
WSGI entry point for nodedash
Use this with production WSGI servers like Gunicorn
"""
import os
import sys

from dotenv import load_dotenv

# Config classes read the environment at import time
load_dotenv()

from nodedash.main import app, init_runtime  # noqa: E402

# Initialize storage, connections and background jobs on startup
if __name__ != '__main__':
    # Only initialize when running under WSGI server, not when imported
    try:
        init_runtime(app)
    except Exception as e:
        print(f"Error during initialization: {e}", file=sys.stderr)
        raise

# WSGI application
application = app

if __name__ == '__main__':
    # For development/testing only
    # In production, use: gunicorn -c gunicorn.conf.py wsgi:application
    init_runtime(app)
    port = int(os.environ.get('PORT', 4000))
    app.run(host='0.0.0.0', port=port, debug=False)
