"""
refgraph API Routers Package

Router Structure:
-----------------
- system.py : /api/health - System health
- notes.py  : /api/notes/*, /api/entities/*, /api/suggest, /api/resolve, /api/graph
"""

import importlib
import logging
from typing import List

from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Order matters - more specific routes should come before general ones
ROUTER_MODULES: List[str] = [
    "system",
    "notes",
]


def register_routers(app: FastAPI) -> List[str]:
    """
    Register all API routers with the FastAPI application.

    Returns:
        List of registered router names
    """
    registered = []
    for module_name in ROUTER_MODULES:
        module = importlib.import_module(f".{module_name}", package=__name__)
        app.include_router(module.router)
        registered.append(module_name)
        logger.debug(f"Registered router: {module_name}")

    logger.info(f"Registered {len(registered)} routers")
    return registered
