from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..modules import ModuleService
from ..schemas import ModuleUpsertRequest
from .auth import get_current_user, User

router = APIRouter(prefix="/modules", tags=["modules"])


@router.put("/{slug}")
def upsert_module(slug: str, req: ModuleUpsertRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	module = ModuleService(db).upsert_module(slug, req)
	return module.to_wire()


@router.get("/{slug}")
def get_module(slug: str, db: Session = Depends(get_db)):
	module = ModuleService(db).get_module(slug)
	if module is None:
		raise HTTPException(status_code=404, detail="module not found")
	return module.to_wire()
