import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Security
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import Principal, decode_access_token
from book import Book
from config import Settings, settings as default_settings
from errors import Forbidden, LibraryError, StorageFailure, Unauthorized
from library import Library
from user import Role, User

logging.basicConfig(level=default_settings.log_level)
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("library.access")


# --- Models ---
class BookModel(BaseModel):
    isbn: str
    title: str
    authors: str | None = None
    year: int | None = None
    category: str | None = None
    publisher: str | None = None
    total_copies: int
    available: int


class BookCreateModel(BaseModel):
    isbn: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    authors: str | None = None
    year: int | None = None
    category: str | None = None
    publisher: str | None = None
    total_copies: int = Field(1, ge=0)


class UserRegisterModel(BaseModel):
    registration: str
    name: str
    cpf: str
    email: str
    address: str | None = None
    phone: str | None = None
    role: str = Role.USER.value
    password: str = Field(..., min_length=1)


class LoginModel(BaseModel):
    email: str
    password: str


class TokenModel(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoanCreateModel(BaseModel):
    isbn: str
    registration: str
    loan_date: date | None = None
    due_date: date | None = None


class LoanModel(BaseModel):
    id: int
    book_isbn: str
    user_registration: str
    loan_date: date
    due_date: date
    return_date: date | None = None
    status: str
    fine: float


class MostLoanedBookModel(BaseModel):
    isbn: str
    title: str
    authors: str | None = None
    loan_count: int


class MostLoanedUserModel(BaseModel):
    registration: str
    name: str
    loan_count: int


class OverdueLoanModel(BaseModel):
    id: int
    isbn: str
    title: str
    name: str
    due_date: date


class LoanHistoryModel(BaseModel):
    id: int
    isbn: str
    title: str
    registration: str
    name: str
    loan_date: date
    due_date: date
    return_date: date | None = None
    status: str
    fine: float


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    total_users: int
    open_loans: int
    overdue_loans: int


# --- Dependencies ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_library(request: Request) -> Library:
    return request.app.state.library


def get_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Principal:
    """Resolve the bearer token to a principal backed by an existing user."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Token not provided.")
    library: Library = request.app.state.library
    try:
        claims = decode_access_token(credentials.credentials, library.settings)
    except Unauthorized as e:
        raise Forbidden("Invalid token.") from e
    user = library.find_user(claims["registration"])
    if user is None:
        raise Unauthorized("User not found.")
    return Principal.from_user(user)


def _loan_model(loan) -> LoanModel:
    data = loan.to_dict()
    data["fine"] = float(data["fine"])
    return LoanModel(**data)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Open the database pool at startup and release it at shutdown
        app.state.library = Library(settings=settings)
        try:
            yield
        finally:
            app.state.library.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    # --- Error handling ---
    def _internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"[ERROR] method={request.method} path={request.url.path} message={exc}",
            exc_info=None if settings.is_production else exc,
        )
        body: Dict[str, Any] = {"message": "Internal server error"}
        if not settings.is_production:
            body["error"] = str(exc)
        return JSONResponse(status_code=500, content=body)

    # --- Request id and access log ---
    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            # Unhandled errors still get a tagged 500 and an access-log line
            response = _internal_error(request, exc)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-Id"] = request_id
        access_logger.info(
            f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f} ms reqId={request_id}"
        )
        return response

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        if isinstance(exc, StorageFailure) or exc.status_code >= 500:
            return _internal_error(request, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request.", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(
                status_code=404,
                content={"success": False, "message": "Route not found", "path": request.url.path},
            )
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return _internal_error(request, exc)

    # --- Health ---
    @app.get("/health")
    def health(library: Library = Depends(get_library)):
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.app_version,
            "db": library.db.ping(),
        }

    # --- Users ---
    @app.post("/users/register")
    def register_user(payload: UserRegisterModel, library: Library = Depends(get_library)):
        user = User(
            registration=payload.registration,
            name=payload.name,
            cpf=payload.cpf,
            email=payload.email,
            address=payload.address,
            phone=payload.phone,
            role=payload.role,
        )
        library.register_user(user, payload.password)
        return {"message": "User registered successfully", "registration": user.registration}

    @app.post("/users/login", response_model=TokenModel)
    def login(payload: LoginModel, library: Library = Depends(get_library)):
        token = library.authenticate(payload.email, payload.password)
        return TokenModel(access_token=token)

    @app.delete("/users/{registration}")
    def delete_user(registration: str, library: Library = Depends(get_library),
                    principal: Principal = Depends(get_principal)):
        library.delete_user(principal, registration)
        return {"message": "User deleted successfully"}

    # --- Books ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(
        title: Optional[str] = Query(None),
        author: Optional[str] = Query(None),
        category: Optional[str] = Query(None),
        available: Optional[bool] = Query(None, description="true: copies on the shelf, false: none left"),
        isbn: Optional[str] = Query(None),
        q: Optional[str] = Query(None, description="Search title, authors, category or ISBN"),
        library: Library = Depends(get_library),
        principal: Principal = Depends(get_principal),
    ):
        books = library.list_books(title=title, author=author, category=category,
                                   available=available, isbn=isbn, q=q)
        return [BookModel(**b.to_dict()) for b in books]

    @app.get("/books/{isbn}", response_model=BookModel)
    def get_book(isbn: str, library: Library = Depends(get_library),
                 principal: Principal = Depends(get_principal)):
        book = library.find_book(isbn)
        if not book:
            return JSONResponse(status_code=404, content={"message": "Book not found."})
        return BookModel(**book.to_dict())

    @app.post("/books")
    def add_book(payload: BookCreateModel, library: Library = Depends(get_library),
                 principal: Principal = Depends(get_principal)):
        book = library.add_book(principal, Book(**payload.model_dump()))
        return {"message": "Book added successfully", "isbn": book.isbn}

    @app.delete("/books/{isbn}")
    def delete_book(isbn: str, library: Library = Depends(get_library),
                    principal: Principal = Depends(get_principal)):
        library.delete_book(principal, isbn)
        return {"message": "Book deleted successfully"}

    # --- Loans ---
    @app.post("/loans")
    def open_loan(payload: LoanCreateModel, library: Library = Depends(get_library),
                  principal: Principal = Depends(get_principal)):
        loan_id = library.open_loan(principal, payload.isbn, payload.registration,
                                    loan_date=payload.loan_date, due_date=payload.due_date)
        return {"message": "Loan registered", "id": loan_id}

    @app.post("/loans/{loan_id}/return")
    def return_loan(loan_id: int, library: Library = Depends(get_library),
                    principal: Principal = Depends(get_principal)):
        fine = library.return_loan(principal, loan_id)
        return {"message": "Return registered", "fine": float(fine)}

    @app.get("/loans", response_model=List[LoanModel])
    def list_loans(library: Library = Depends(get_library),
                   principal: Principal = Depends(get_principal)):
        return [_loan_model(loan) for loan in library.list_loans()]

    @app.get("/loans/{registration}", response_model=List[LoanModel])
    def list_user_loans(registration: str, library: Library = Depends(get_library),
                        principal: Principal = Depends(get_principal)):
        loans = library.list_user_loans(registration)
        if not loans:
            return JSONResponse(status_code=404, content={"message": "No loans found for this user."})
        return [_loan_model(loan) for loan in loans]

    # --- Reports ---
    @app.get("/reports/books-most-loaned", response_model=List[MostLoanedBookModel])
    def report_books_most_loaned(library: Library = Depends(get_library),
                                 principal: Principal = Depends(get_principal)):
        return library.most_loaned_books()

    @app.get("/reports/users-most-loaned", response_model=List[MostLoanedUserModel])
    def report_users_most_loaned(library: Library = Depends(get_library),
                                 principal: Principal = Depends(get_principal)):
        return library.most_loaned_users()

    @app.get("/reports/overdue-books", response_model=List[OverdueLoanModel])
    def report_overdue_books(library: Library = Depends(get_library),
                             principal: Principal = Depends(get_principal)):
        return library.overdue_books()

    @app.get("/reports/loans-history", response_model=List[LoanHistoryModel])
    def report_loans_history(start: Optional[str] = Query(None), end: Optional[str] = Query(None),
                             library: Library = Depends(get_library),
                             principal: Principal = Depends(get_principal)):
        return library.loans_history(start, end)

    @app.get("/stats", response_model=StatsModel)
    def get_library_stats(library: Library = Depends(get_library),
                          principal: Principal = Depends(get_principal)):
        return StatsModel(**library.get_statistics())

    return app


app = create_app()
