"""API module for the reading evaluation platform."""
from .routes import (
    master_router,
    admin_router,
    classrooms_router,
    maestro_router,
    templates_router,
    tutor_router,
    student_router,
    me_router,
)
from .dependencies import create_access_token, decode_access_token, get_caller, get_procedures

routers = [
    me_router,
    master_router,
    admin_router,
    classrooms_router,
    maestro_router,
    templates_router,
    tutor_router,
    student_router,
]

__all__ = [
    "master_router",
    "admin_router",
    "classrooms_router",
    "maestro_router",
    "templates_router",
    "tutor_router",
    "student_router",
    "me_router",
    "routers",
    "create_access_token",
    "decode_access_token",
    "get_caller",
    "get_procedures",
]
