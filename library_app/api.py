import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from library_app.auth import AuthService
from library_app.circulation import Circulation
from library_app.config import settings
from library_app.database import get_db_connection, initialize_database, to_iso, utcnow
from library_app.errors import (
    AccessDeniedError,
    AuthenticationError,
    DuplicateError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from library_app.fine_ledger import FineLedger
from library_app.library import Library
from library_app.members import MemberDirectory
from library_app.reports import ReportService
from library_app.services.assistant_service import assistant_service
from library_app.services.http_client import cleanup_http_client
from library_app.user import User

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

library = Library()
circulation = Circulation()
fine_ledger = FineLedger()
members = MemberDirectory()
reports = ReportService()
auth_service = AuthService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Başlangıçta tabloları oluştur
    initialize_database()
    try:
        yield
    finally:
        # Kapanışta kaynakları temizle
        await cleanup_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Güvenlik ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Servis anahtarını doğrulamak için bağımlılık."""
    if api_key and api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> User:
    """Bearer oturum belirtecinden geçerli kullanıcıyı çöz."""
    user = auth_service.user_for_token(credentials.credentials if credentials else None)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated",
                            headers={"WWW-Authenticate": "Bearer"})
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _http_error(e: StoreError) -> HTTPException:
    """Alan hatalarını HTTP durum kodlarına eşle."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, AccessDeniedError):
        return HTTPException(status_code=403, detail=e.message)
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=401, detail=e.message)
    if isinstance(e, DuplicateError):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)


# --- Modeller ---
class RegisterModel(BaseModel):
    name: str
    email: str
    password: str


class LoginModel(BaseModel):
    email: str
    password: str


class ProfileUpdateModel(BaseModel):
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class BookCreateModel(BaseModel):
    uid: str
    name: str
    author: str
    total_copies: int = Field(default=1, ge=0)
    available_copies: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    shelf_id: Optional[str] = None
    cover_image: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None


class BookUpdateModel(BaseModel):
    uid: Optional[str] = None
    name: Optional[str] = None
    author: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=0)
    available_copies: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    shelf_id: Optional[str] = None
    cover_image: Optional[str] = None
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    published_year: Optional[int] = None


class BorrowRequestModel(BaseModel):
    book_id: str
    days: int = Field(default=settings.default_borrow_days, ge=1)
    notes: Optional[str] = None


class AssignModel(BaseModel):
    book_id: str
    member_id: str
    due_date: Optional[str] = Field(default=None, description="ISO-8601; varsayılan 14 gün sonra")
    notes: Optional[str] = None


class ShelfModel(BaseModel):
    name: str
    location: str
    capacity: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None


class ShelfUpdateModel(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None


class RoleUpdateModel(BaseModel):
    role: str


class RecommendationModel(BaseModel):
    query: str


# --- Sağlık Kontrolü ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        logger.exception("Health check database probe failed")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": to_iso(utcnow()),
        "db": db_ok,
        "services": {"assistant": assistant_service.is_available()},
    }


# --- Kimlik Doğrulama ---
@app.post("/auth/register", status_code=201)
def register(payload: RegisterModel):
    try:
        user = auth_service.register(payload.name, payload.email, payload.password)
    except StoreError as e:
        raise _http_error(e)
    return user.to_dict()


@app.post("/auth/login")
def login(payload: LoginModel):
    try:
        token, user = auth_service.login(payload.email, payload.password)
    except StoreError as e:
        raise _http_error(e)
    return {"access_token": token, "token_type": "bearer", "user": user.to_dict()}


@app.post("/auth/logout")
def logout(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)):
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return {"logged_out": auth_service.logout(credentials.credentials)}


# --- Profil ---
@app.get("/me")
def get_profile(user: User = Depends(get_current_user)):
    return user.to_dict()


@app.patch("/me")
def update_profile(payload: ProfileUpdateModel, user: User = Depends(get_current_user)):
    try:
        updated = members.update_profile(user.id, name=payload.name, avatar_url=payload.avatar_url)
    except StoreError as e:
        raise _http_error(e)
    return updated.to_dict()


@app.get("/me/books")
def my_books(user: User = Depends(get_current_user)):
    now = utcnow()
    return [r.to_dict(now) for r in circulation.member_books(user.id)]


@app.get("/me/history")
def my_history(user: User = Depends(get_current_user)):
    now = utcnow()
    return [r.to_dict(now) for r in circulation.member_history(user.id)]


@app.get("/me/requests")
def my_requests(status: str = Query("all"), user: User = Depends(get_current_user)):
    try:
        records = circulation.list_records(status=status, member_id=user.id)
    except StoreError as e:
        raise _http_error(e)
    now = utcnow()
    return [r.to_dict(now) for r in records]


# --- Katalog ---
@app.get("/books")
def list_books(
    q: Optional[str] = Query(None, description="Ad, yazar, UID veya ISBN içinde arama"),
    category: Optional[str] = None,
    shelf_id: Optional[str] = None,
    available_only: bool = False,
    user: User = Depends(get_current_user),
):
    books = library.list_books(q, category=category, shelf_id=shelf_id, available_only=available_only)
    return [b.to_dict() for b in books]


@app.get("/books/categories")
def list_categories(user: User = Depends(get_current_user)):
    return library.list_categories()


@app.get("/books/{book_id}")
def get_book(book_id: str, user: User = Depends(get_current_user)):
    try:
        book, shelf = library.get_book_with_shelf(book_id)
    except StoreError as e:
        raise _http_error(e)
    data = book.to_dict()
    data["shelf"] = shelf.to_dict() if shelf else None
    return data


@app.post("/books", status_code=201)
def create_book(payload: BookCreateModel, admin: User = Depends(require_admin)):
    try:
        book = library.add_book(**payload.model_dump())
    except StoreError as e:
        raise _http_error(e)
    return book.to_dict()


@app.put("/books/{book_id}")
def update_book(book_id: str, payload: BookUpdateModel, admin: User = Depends(require_admin)):
    try:
        book = library.update_book(book_id, **payload.model_dump(exclude_none=True))
    except StoreError as e:
        raise _http_error(e)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book.to_dict()


@app.delete("/books/{book_id}")
def delete_book(book_id: str, admin: User = Depends(require_admin)):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return {"message": "Book deleted"}


@app.post("/admin/books", dependencies=[Depends(get_api_key)])
def privileged_create_book(payload: Dict[str, Any] = Body(...)):
    """Servis anahtarıyla kullanıcı rol kontrollerini atlayan kitap ekleme.

    Her reddedilen ekleme, gövde doğrulama hataları dahil, 400 {"error", "code"} döner.
    """
    try:
        book_data = BookCreateModel.model_validate(payload)
        book = library.add_book(**book_data.model_dump())
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        message = f"Invalid book data: {field}: {first['msg']}"
        logger.warning(f"Privileged book insert rejected: {message}")
        return JSONResponse(status_code=400, content={"error": message, "code": None})
    except StoreError as e:
        logger.warning(f"Privileged book insert failed: {e.message}")
        return JSONResponse(status_code=400, content=e.to_dict())
    logger.info(f"Privileged book insert: uid={book.uid}")
    return JSONResponse(status_code=201, content={"data": book.to_dict()})


# --- Ödünç ---
@app.post("/borrows", status_code=201)
def request_borrow(payload: BorrowRequestModel, user: User = Depends(get_current_user)):
    try:
        record = circulation.request_borrow(payload.book_id, user.id, payload.days, notes=payload.notes)
    except StoreError as e:
        raise _http_error(e)
    return record.to_dict()


@app.delete("/borrows/{record_id}")
def cancel_borrow(record_id: str, user: User = Depends(get_current_user)):
    return {"cancelled": circulation.cancel(record_id, user.id)}


@app.get("/borrows")
def list_borrows(
    q: Optional[str] = Query(None, description="Kitap adı, üye adı veya e-posta"),
    status: str = Query("all"),
    admin: User = Depends(require_admin),
):
    try:
        records = circulation.list_records(q, status=status)
    except StoreError as e:
        raise _http_error(e)
    now = utcnow()
    return [r.to_dict(now) for r in records]


@app.get("/borrows/overview")
def borrows_overview(admin: User = Depends(require_admin)):
    return circulation.overview()


@app.post("/borrows/assign", status_code=201)
def assign_book(payload: AssignModel, admin: User = Depends(require_admin)):
    try:
        record = circulation.assign(payload.book_id, payload.member_id, payload.due_date, notes=payload.notes)
    except StoreError as e:
        raise _http_error(e)
    return record.to_dict()


@app.post("/borrows/{record_id}/approve")
def approve_borrow(record_id: str, admin: User = Depends(require_admin)):
    try:
        return circulation.approve(record_id).to_dict()
    except StoreError as e:
        raise _http_error(e)


@app.post("/borrows/{record_id}/reject")
def reject_borrow(record_id: str, admin: User = Depends(require_admin)):
    try:
        return circulation.reject(record_id).to_dict()
    except StoreError as e:
        raise _http_error(e)


@app.post("/borrows/{record_id}/return")
def return_borrow(record_id: str, admin: User = Depends(require_admin)):
    try:
        record, fine = circulation.mark_returned(record_id)
    except StoreError as e:
        raise _http_error(e)
    return {"record": record.to_dict(), "fine": fine.to_dict() if fine else None}


@app.post("/admin/mark-overdue")
def mark_overdue(admin: User = Depends(require_admin)):
    return {"updated": circulation.mark_overdue()}


# --- Cezalar ---
@app.get("/fines")
def list_fines(q: Optional[str] = None, user: User = Depends(get_current_user)):
    fines = fine_ledger.list_fines(user, q)
    return {"fines": [f.to_dict() for f in fines], "totals": fine_ledger.totals(fines)}


@app.post("/fines/{fine_id}/pay")
def pay_fine(fine_id: str, user: User = Depends(get_current_user)):
    try:
        return fine_ledger.mark_paid(fine_id, user).to_dict()
    except StoreError as e:
        raise _http_error(e)


# --- Raflar ---
@app.get("/shelves")
def list_shelves(user: User = Depends(get_current_user)):
    return [s.to_dict() for s in library.list_shelves()]


@app.get("/shelves/summary")
def shelves_summary(user: User = Depends(get_current_user)):
    return library.shelf_summary()


@app.post("/shelves", status_code=201)
def create_shelf(payload: ShelfModel, admin: User = Depends(require_admin)):
    try:
        shelf = library.add_shelf(payload.name, payload.location, payload.capacity, payload.description)
    except StoreError as e:
        raise _http_error(e)
    return shelf.to_dict()


@app.put("/shelves/{shelf_id}")
def update_shelf(shelf_id: str, payload: ShelfUpdateModel, admin: User = Depends(require_admin)):
    try:
        shelf = library.update_shelf(shelf_id, **payload.model_dump(exclude_none=True))
    except StoreError as e:
        raise _http_error(e)
    if not shelf:
        raise HTTPException(status_code=404, detail="Shelf not found")
    return shelf.to_dict()


@app.delete("/shelves/{shelf_id}")
def delete_shelf(shelf_id: str, admin: User = Depends(require_admin)):
    if not library.remove_shelf(shelf_id):
        raise HTTPException(status_code=404, detail="Shelf not found")
    return {"message": "Shelf deleted"}


# --- Üyeler ---
@app.get("/members")
def list_members(role: Optional[str] = None, q: Optional[str] = None, admin: User = Depends(require_admin)):
    try:
        return members.list_members(role=role, search=q)
    except StoreError as e:
        raise _http_error(e)


@app.patch("/members/{user_id}/role")
def update_member_role(user_id: str, payload: RoleUpdateModel, admin: User = Depends(require_admin)):
    try:
        return members.update_role(user_id, payload.role, admin).to_dict()
    except StoreError as e:
        raise _http_error(e)


# --- Pano ve Raporlar ---
@app.get("/stats")
def get_stats(user: User = Depends(get_current_user)):
    return library.get_statistics()


@app.get("/reports/summary")
def report_summary(period: str = Query("month"), admin: User = Depends(require_admin)):
    try:
        summary = reports.summary(period)
        summary["popular_books"] = reports.popular_books(period)
        summary["active_members"] = reports.active_members(period)
    except StoreError as e:
        raise _http_error(e)
    return summary


@app.get("/reports/export")
def export_report(
    report_type: str = Query("borrows"),
    fmt: str = Query("csv", description="csv, json, xlsx veya pdf"),
    period: str = Query("month"),
    admin: User = Depends(require_admin),
):
    try:
        filename, content, media_type = reports.export(report_type, fmt, period)
    except StoreError as e:
        raise _http_error(e)
    return Response(content=content, media_type=media_type,
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


# --- Sohbet Asistanı ---
@app.post("/chat")
async def chat(payload: Dict[str, Any] = Body(...)):
    messages = payload.get("messages")
    if not messages or not isinstance(messages, list):
        return JSONResponse(status_code=400, content={"error": "Messages array is required"})
    books = library.available_books_snapshot(settings.assistant_book_limit)
    reply = await assistant_service.chat(messages, books)
    return {"message": reply}


@app.post("/chat/recommendations")
async def chat_recommendations(payload: RecommendationModel, user: User = Depends(get_current_user)):
    books = library.available_books_snapshot(settings.assistant_book_limit)
    reply = await assistant_service.recommend(payload.query, books)
    return {"message": reply}
