from fastapi import APIRouter

router = APIRouter(prefix="/api/member")

from . import classes, class_packs

router.include_router(classes.router)
router.include_router(class_packs.router)
