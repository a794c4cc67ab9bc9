from app.routers import assessments, auth, health, instructor

__all__ = [
    "assessments",
    "auth",
    "health",
    "instructor",
]
