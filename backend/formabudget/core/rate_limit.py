from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple

from fastapi import Request

from formabudget.core.errors import AppHTTPException
from formabudget.core.settings import settings

"""
Core Rate Limit.

Rôle (fonctionnel) :
- Limite les rafales d’écritures sur les routes de gestion (plans, budgets, facturation).
- Implémentation “in-memory” par IP + route (method + path), fenêtre fixe de 60 secondes (RPM).
- Mono-process : avec plusieurs workers, chaque worker a son propre compteur.

Activation via settings :
- RATE_LIMIT_ENABLED : active/désactive le rate limiting.
- RATE_LIMIT_RPM : limite de requêtes par minute (par IP + route).
"""

# Préfixes soumis au rate limit (les lectures simples /health, /system n’y sont pas)
LIMITED_PREFIXES = ("/plans", "/budget", "/besoins", "/billing")

WINDOW_SECONDS = 60.0


@dataclass
class _Bucket:
    window_start: float
    count: int


class InMemoryRateLimiter:
    """Compteur par (IP, "METHOD /path") remis à zéro à chaque fenêtre ; 429 au-delà de la limite."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._buckets: Dict[Tuple[str, str], _Bucket] = {}

    def applies_to(self, path: str) -> bool:
        return path.startswith(LIMITED_PREFIXES)

    def _client_ip(self, request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def check(self, request: Request) -> None:
        """Vérifie la limite pour (IP + route). Lève 429 si dépassement."""
        if not getattr(settings, "RATE_LIMIT_ENABLED", False):
            return

        limit = int(getattr(settings, "RATE_LIMIT_RPM", 120) or 120)
        if limit <= 0:
            return

        key = (self._client_ip(request), f"{request.method} {request.url.path}")
        now = time.time()

        with self._lock:
            bucket = self._buckets.get(key)

            if bucket is None or (now - bucket.window_start) >= WINDOW_SECONDS:
                self._buckets[key] = _Bucket(window_start=now, count=1)
                return

            bucket.count += 1
            if bucket.count > limit:
                raise AppHTTPException(
                    429,
                    "RATE_LIMITED",
                    f"Trop de requêtes (limite: {limit}/min).",
                    details={"limit_rpm": limit},
                )

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


# Instance globale importable (utilisée dans le middleware)
rate_limiter = InMemoryRateLimiter()
