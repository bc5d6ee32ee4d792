"""First sign-in provisioning: create the user and seed starter containers."""

from __future__ import annotations

import logging

from .db import SqliteRepository
from .errors import ValidationError

logger = logging.getLogger(__name__)


DEFAULT_COURSES: tuple[tuple[str, str, str], ...] = (
    (
        "Learn Python",
        "A comprehensive course covering Python basics to advanced concepts",
        "green",
    ),
    (
        "Advanced JavaScript",
        "Deep dive into modern JavaScript and advanced programming patterns",
        "yellow",
    ),
    (
        "Web Development Bootcamp",
        "Full-stack web development course covering frontend and backend technologies",
        "blue",
    ),
)

DEFAULT_PROJECTS: tuple[tuple[str, str, str], ...] = (
    (
        "Personal Portfolio",
        "Building a responsive portfolio website using React and Tailwind CSS",
        "blue",
    ),
    (
        "E-commerce App",
        "Full-stack e-commerce application with Next.js and Supabase",
        "purple",
    ),
    (
        "Mobile Weather App",
        "React Native weather application with API integration",
        "teal",
    ),
)


def ensure_user(repository: SqliteRepository, external_id: str, email: str = "") -> int:
    """Return the internal id for ``external_id``, provisioning on first use."""
    external_id = external_id.strip()
    if not external_id:
        raise ValidationError("A user id is required")

    user_id = repository.find_user(external_id)
    if user_id is not None:
        return user_id

    user_id = repository.create_user(
        external_id, email=email, courses=DEFAULT_COURSES, projects=DEFAULT_PROJECTS
    )
    logger.info("Provisioned user %s (id=%s) with starter data", external_id, user_id)
    return user_id
