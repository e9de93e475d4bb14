"""
Actor Context Middleware - exposes the authenticated caller on ``flask.g``.

Authentication happens upstream (API gateway / auth service). The gateway
forwards the verified identity in ``X-Actor-Id`` and the caller's shipboard
role (CADET, CTO, MASTER) in ``X-Actor-Role``; this hook copies them to
``g.actor_id`` / ``g.actor_role`` so services can attach them to audit rows
and log records. It never authenticates or rejects a request; role checks
belong to the services that need them.
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor-Id"
ROLE_HEADER = "X-Actor-Role"


def init_actor_context(app):
    """Register actor context as a before_request hook."""

    @app.before_request
    def _actor_context():
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        g.actor_id = actor[:200] or None
        role = (request.headers.get(ROLE_HEADER) or "").strip()
        g.actor_role = role[:20] or None
