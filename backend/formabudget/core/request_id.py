from __future__ import annotations

import uuid
from contextvars import ContextVar

"""
Core Request ID.

Rôle (fonctionnel) :
- Conserve l’identifiant de la requête HTTP courante dans un ContextVar.
- Sert à corréler logs JSON, payloads d’erreur et entrées d’historique (historique_events.request_id).
- Valeur reprise du header X-Request-Id si le front en fournit un, sinon UUID généré.
"""

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

# Longueur max stockée en base (historique_events.request_id)
MAX_REQUEST_ID_LEN = 64


def set_request_id(rid: str | None) -> None:
    _request_id.set(rid)


def get_request_id() -> str | None:
    return _request_id.get()


def ensure_request_id(incoming: str | None = None) -> str:
    """
    Fixe le request_id du contexte courant et le retourne.

    Un identifiant entrant est nettoyé et tronqué ; à défaut, un UUID est généré.
    """
    rid = (incoming or "").strip()[:MAX_REQUEST_ID_LEN] or str(uuid.uuid4())
    set_request_id(rid)
    return rid
