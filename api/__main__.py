"""
Development server: `python -m api`.

Production runs create_app() under a WSGI server; every worker then builds its
own TokenAuthority against the shared database and redis.
"""
import logging
import os

from . import create_app

logger = logging.getLogger("api")

app = create_app(os.getenv("APP_ENV"))

if __name__ == "__main__":
    host = os.getenv("FLASK_RUN_HOST", "127.0.0.1")
    port = int(os.getenv("FLASK_RUN_PORT", "8000"))
    if app.config.get("FAST_STORE") == "memory":
        logger.warning("FAST_STORE=memory: rate limits and the denylist are per process")
    logger.info("Token authority on %s:%s (env=%s, db=%s)", host, port, app.config["APP_ENV"], app.config["DATABASE_URL"].split(":", 1)[0])
    app.run(host=host, port=port, debug=app.config.get("DEBUG", False))
