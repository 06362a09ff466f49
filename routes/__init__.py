"""
Plaid Test Kit Routes Package
=============================
Flask blueprints for modular route organization.

Blueprints:
- health_bp:   /health, /                       - liveness and landing (2 routes)
- auth_bp:     /auth, /api/validate-key, ...    - credential entry and session (5 routes)
- plaid_bp:    /api/*                           - Plaid link and product testers (14 routes)
- webhooks_bp: /webhooks, /api/webhooks/*       - webhook receiver and viewer (10 routes)
"""


def register_blueprints(app):
    """Register every blueprint on the app. Imported here so `auth` can import route helpers."""
    from .health import health_bp
    from .auth_routes import auth_bp
    from .plaid_routes import plaid_bp
    from .webhook_routes import webhooks_bp

    for blueprint in (health_bp, auth_bp, plaid_bp, webhooks_bp):
        app.register_blueprint(blueprint)


__all__ = ['register_blueprints']
