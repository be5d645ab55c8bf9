from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import AuthUser, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


def hash_password(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode("utf-8")[:72]
	return pwd_context.hash(password_bytes.decode("utf-8", errors="ignore"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	password_bytes = plain_password.encode("utf-8")[:72]
	return pwd_context.verify(password_bytes.decode("utf-8", errors="ignore"), hashed_password)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	user_row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if user_row and verify_password(password, user_row.password_hash):
		return User(username=username)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def issue_token(db: Session, username: str) -> str:
	"""Create a server-side session (jti) and a JWT bound to it."""
	session_id = uuid.uuid4().hex
	db.add(AuthSession(session_id=session_id, username=username))
	db.commit()
	return create_access_token({"sub": username, "jti": session_id})


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	return Token(access_token=issue_token(db, user.username))


def _user_from_token(token: str, db: Session) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist so revoked sessions stop working.
	try:
		row = db.get(AuthSession, jti)
		if not row or row.username != username:
			raise credentials_exception
		row.last_activity_at = datetime.utcnow()
		db.add(row)
		db.commit()
	except HTTPException:
		raise
	except Exception:
		# On DB errors, fail closed
		raise credentials_exception
	return User(username=username)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	return _user_from_token(token, db)


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
	"""Identity when a valid bearer token is sent; anonymous callers get ``None``."""
	if not token:
		return None
	try:
		return _user_from_token(token, db)
	except HTTPException:
		return None


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	username: str
	password: str


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = (req.username or "").strip()
	password = req.password or ""
	if not username or not password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	existing = db.query(AuthUser).filter(AuthUser.username == username).first()
	if existing:
		raise HTTPException(status_code=409, detail="username already exists")
	db.add(AuthUser(username=username, password_hash=hash_password(password)))
	db.commit()
	return {"ok": True}
