"""API v1 — versioned router.

Router structure
----------------
PUBLIC (no auth):
  /health                  → database connectivity

AUTHENTICATED (verified identity claims required):
  /hierarchy/me            → reconciled current user
  /hierarchy/users/{id}/*  → user, subtree, managers, head-counts (access-checked)
  /hierarchy/access/{id}   → access decision
  /hierarchy/accessible    → users visible to the caller

ADMIN (top-of-hierarchy role, enforced per endpoint):
  /hierarchy/users/{id}/parent → reparent / detach
  /admin/users/*               → create, patch, delete, import, repair paths
  /admin/audit                 → activity log
"""
from fastapi import APIRouter

from .endpoints import admin, health, hierarchy

router = APIRouter(prefix="/api/v1")

router.include_router(health.router, tags=["Health"])
router.include_router(hierarchy.router)
router.include_router(admin.router)
