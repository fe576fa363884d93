# run.py
"""
Development server entry point. Production runs create_app() under a WSGI server.
"""
import os

from sitebudget.app_factory import create_app


def main():
    app = create_app(os.getenv("FLASK_CONFIG", "development"))

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    app.run(host=host, port=port, debug=app.config.get("DEBUG", False), use_reloader=False)


if __name__ == "__main__":
    main()
