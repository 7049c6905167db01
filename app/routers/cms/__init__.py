from fastapi import APIRouter

router = APIRouter(prefix="/api/cms")

from . import classes, sessions, bookings, class_packs

router.include_router(classes.router)
router.include_router(sessions.router)
router.include_router(bookings.router)
router.include_router(class_packs.router)
