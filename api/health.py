from flask import Blueprint

from utils.decorators import get_authority

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: API and both stores are up
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
            version:
              type: string
              example: 1.0.0
            checks:
              type: object
      503:
        description: A store is unreachable
    """
    checks = get_authority().health()
    healthy = all(checks.values())
    body = {"status": "ok" if healthy else "degraded", "version": "1.0.0", "checks": checks}
    return body, 200 if healthy else 503
