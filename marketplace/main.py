"""
AI Marketplace API - Main Application
======================================
FastAPI backend for a marketplace where sellers list AI products, buyers
request custom projects, and both sides talk through direct messages.

Endpoints (all under /api unless noted):
    GET  /                                   - Health check
    auth:      /register, /login, /logout, /user, /users/batch, /users/{id}
    waitlist:  POST /waitlist
    products:  list / featured / category / seller / detail / create /
               update / delete / verify / verification-history
    projects:  list / mine / detail / create / update
    messages:  list / conversations / thread / open thread / send / mark read
    news:      list / detail / create (admin)
    chat:      POST /chat

Architecture:
    create_app() builds the app around an explicitly constructed store,
    session store, verifier and chat responder (all on app.state), so
    tests can run against isolated instances. The verifier and responder
    implementations (rule-based or LLM-backed) are chosen once here from
    configuration.

Errors:
    Domain errors (marketplace.errors) render as {"message": ...} with
    their status code. Request validation errors render as 400.
"""

import logging
import traceback

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from marketplace.config import (
    ADMIN_USERNAMES, AUTO_VERIFY_PRODUCTS, CHAT_BACKEND, LOG_LEVEL,
    SESSION_COOKIE_NAME, SESSION_TTL_SECONDS, VERIFIER_BACKEND,
)
from marketplace.core.chat_responder import ChatResponder, build_responder
from marketplace.core.conversations import counterpart_of, open_conversation, summarize_conversations
from marketplace.core.verification import ProductVerifier, build_verifier, run_verification
from marketplace.errors import (
    AuthError, ExternalServiceError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError,
)
from marketplace.llm.llm_client import LLMClient
from marketplace.schemas import (
    ChatReply, ChatRequest, ConversationSummary, LoginRequest, Message, MessageCreate,
    News, NewsCreate, OpenedConversation, Product, ProductCreate, ProductUpdate,
    ProductVerification, Project, ProjectCreate, ProjectUpdate, PublicUser, User,
    UserCreate, UserUpdate, VerificationEvent, VerifyRequest, WaitlistCreate, WaitlistEntry,
)
from marketplace.security import get_current_user, hash_password, require_role, verify_password
from marketplace.session_store import SessionStore
from marketplace.storage import BaseStore, MemoryStore

# Configure logging for production visibility
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

router = APIRouter()


# ---------- DEPENDENCIES ----------

def get_store(request: Request) -> BaseStore:
    return request.app.state.store


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_verifier(request: Request) -> ProductVerifier:
    return request.app.state.verifier


def get_responder(request: Request) -> ChatResponder:
    return request.app.state.responder


# ---------- HELPERS ----------

def _product_or_404(store: BaseStore, product_id: int) -> Product:
    product = store.get_product(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def _project_or_404(store: BaseStore, project_id: int) -> Project:
    project = store.get_project(project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


def _start_session(response: Response, sessions: SessionStore, user: User) -> None:
    token = sessions.create(user.id)
    response.set_cookie(
        SESSION_COOKIE_NAME, token,
        max_age=SESSION_TTL_SECONDS, httponly=True, samesite="lax",
    )


def _parse_ids(raw: str) -> list[int]:
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("ids must be a comma-separated list of integers")


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        parts.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return "Validation error: " + "; ".join(parts)


# ---------- HEALTH CHECK ----------

@router.get("/")
def health_check(request: Request):
    """Health check with the active verifier and chatbot backends."""
    return {
        "status": "running",
        "service": "AI Marketplace API",
        "verifier": request.app.state.verifier.name,
        "chat": request.app.state.responder.name,
    }


# ---------- AUTH & USERS ----------

@router.post("/api/register", response_model=PublicUser, status_code=201)
def register(body: UserCreate, response: Response,
             store: BaseStore = Depends(get_store),
             sessions: SessionStore = Depends(get_sessions)):
    # Duplicate username or email raises ValidationError from the store
    role = "admin" if body.username in ADMIN_USERNAMES else "user"
    user = store.create_user(
        username=body.username,
        password_hash=hash_password(body.password),
        email=body.email,
        full_name=body.fullName,
        role=role,
    )
    _start_session(response, sessions, user)
    logger.info(f"[AUTH] Registered user #{user.id} ({role})")
    return PublicUser.from_user(user)


@router.post("/api/login", response_model=PublicUser)
def login(body: LoginRequest, response: Response,
          store: BaseStore = Depends(get_store),
          sessions: SessionStore = Depends(get_sessions)):
    user = store.get_user_by_username(body.username)
    if not user or not verify_password(body.password, user.password):
        logger.info("[AUTH] Failed login attempt")
        raise AuthError("Invalid username or password")

    _start_session(response, sessions, user)
    logger.info(f"[AUTH] User #{user.id} logged in")
    return PublicUser.from_user(user)


@router.post("/api/logout", status_code=204)
def logout(request: Request, sessions: SessionStore = Depends(get_sessions)):
    sessions.destroy(request.cookies.get(SESSION_COOKIE_NAME))
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/api/user", response_model=PublicUser)
def current_user(user: User = Depends(get_current_user)):
    return PublicUser.from_user(user)


@router.patch("/api/user", response_model=PublicUser)
def update_current_user(body: UserUpdate,
                        user: User = Depends(get_current_user),
                        store: BaseStore = Depends(get_store)):
    updated = store.update_user(user.id, body.model_dump(exclude_unset=True))
    return PublicUser.from_user(updated)


@router.get("/api/users/batch", response_model=list[PublicUser])
def get_users_batch(ids: str = Query("", description="Comma-separated user ids"),
                    store: BaseStore = Depends(get_store)):
    return [PublicUser.from_user(u) for u in store.get_users(_parse_ids(ids))]


@router.get("/api/users/{user_id}", response_model=PublicUser)
def get_user(user_id: int, store: BaseStore = Depends(get_store)):
    user = store.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return PublicUser.from_user(user)


# ---------- WAITLIST ----------

@router.post("/api/waitlist", response_model=WaitlistEntry, status_code=201)
def join_waitlist(body: WaitlistCreate, store: BaseStore = Depends(get_store)):
    # Duplicate emails are rejected inside the store, under its lock, before any write
    return store.add_to_waitlist(body)


# ---------- PRODUCTS ----------

@router.get("/api/products", response_model=list[Product])
def list_products(limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0),
                  store: BaseStore = Depends(get_store)):
    return store.get_products(limit, offset)


@router.get("/api/products/featured", response_model=list[Product])
def featured_products(limit: int = Query(6, ge=1, le=100), store: BaseStore = Depends(get_store)):
    return store.get_featured_products(limit)


@router.get("/api/products/category/{category}", response_model=list[Product])
def products_by_category(category: str, store: BaseStore = Depends(get_store)):
    return store.get_products_by_category(category)


@router.get("/api/products/seller/{seller_id}", response_model=list[Product])
def products_by_seller(seller_id: int, store: BaseStore = Depends(get_store)):
    return store.get_products_by_seller(seller_id)


@router.get("/api/products/{product_id}", response_model=Product)
def get_product(product_id: int, store: BaseStore = Depends(get_store)):
    return _product_or_404(store, product_id)


@router.post("/api/products", response_model=Product, status_code=201)
def create_product(body: ProductCreate, request: Request,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store),
                   verifier: ProductVerifier = Depends(get_verifier)):
    product = store.create_product(body, seller_id=user.id)
    logger.info(f"[PRODUCTS] User #{user.id} created product #{product.id}")

    if request.app.state.auto_verify:
        # The listing is already stored; on failure it stays pending for a later /verify
        try:
            product, _ = run_verification(store, verifier, product)
        except ExternalServiceError as e:
            logger.warning(f"[VERIFY] Auto-verification of product #{product.id} failed: {e.message}")
    return product


@router.put("/api/products/{product_id}", response_model=Product)
def update_product(product_id: int, body: ProductUpdate,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store)):
    product = _product_or_404(store, product_id)
    if product.sellerId != user.id:
        raise ForbiddenError("You don't have permission to update this product")
    return store.update_product(product_id, body.model_dump(exclude_unset=True))


@router.delete("/api/products/{product_id}", status_code=204)
def delete_product(product_id: int,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store)):
    product = _product_or_404(store, product_id)
    if product.sellerId != user.id:
        raise ForbiddenError("You don't have permission to delete this product")
    store.delete_product(product_id)
    logger.info(f"[PRODUCTS] User #{user.id} deleted product #{product_id}")
    return Response(status_code=204)


@router.post("/api/products/{product_id}/verify", response_model=ProductVerification)
def verify_product(product_id: int, body: VerifyRequest,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store),
                   verifier: ProductVerifier = Depends(get_verifier)):
    """
    Automated: run the configured verifier (seller or admin) and return the
    product with its risk score. Manual: admin override of status/notes.
    Both paths append to the verification history.
    """
    product = _product_or_404(store, product_id)

    if body.automated:
        if product.sellerId != user.id and user.role != "admin":
            raise ForbiddenError("You don't have permission to verify this product")
        updated, result = run_verification(store, verifier, product)
        return ProductVerification(**updated.model_dump(), riskScore=result.riskScore)

    if user.role != "admin":
        raise ForbiddenError("Only administrators can set verification status manually")
    if body.verificationStatus is None:
        raise ValidationError("verificationStatus is required for manual verification")

    notes = body.verificationNotes if body.verificationNotes is not None else product.verificationNotes
    updated = store.update_product(product_id, {
        "verificationStatus": body.verificationStatus,
        "verificationNotes": notes,
    })
    store.add_verification_event(
        product_id, actor_id=user.id, automated=False,
        previous_status=product.verificationStatus, status=body.verificationStatus,
        notes=notes, risk_score=None,
    )
    logger.info(f"[VERIFY] Admin #{user.id} set product #{product_id} "
                f"{product.verificationStatus} -> {body.verificationStatus}")
    return ProductVerification(**updated.model_dump())


@router.get("/api/products/{product_id}/verification-history", response_model=list[VerificationEvent])
def verification_history(product_id: int,
                         user: User = Depends(get_current_user),
                         store: BaseStore = Depends(get_store)):
    product = _product_or_404(store, product_id)
    if product.sellerId != user.id and user.role != "admin":
        raise ForbiddenError("You don't have permission to view this product's verification history")
    return store.get_verification_events(product_id)


# ---------- PROJECTS ----------

@router.get("/api/projects", response_model=list[Project])
def list_projects(limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0),
                  store: BaseStore = Depends(get_store)):
    return store.get_projects(limit, offset)


@router.get("/api/projects/user", response_model=list[Project])
def my_projects(user: User = Depends(get_current_user), store: BaseStore = Depends(get_store)):
    return store.get_projects_by_user(user.id)


@router.get("/api/projects/{project_id}", response_model=Project)
def get_project(project_id: int, store: BaseStore = Depends(get_store)):
    return _project_or_404(store, project_id)


@router.post("/api/projects", response_model=Project, status_code=201)
def create_project(body: ProjectCreate,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store)):
    project = store.create_project(body, user_id=user.id)
    logger.info(f"[PROJECTS] User #{user.id} requested project #{project.id}")
    return project


@router.put("/api/projects/{project_id}", response_model=Project)
def update_project(project_id: int, body: ProjectUpdate,
                   user: User = Depends(get_current_user),
                   store: BaseStore = Depends(get_store)):
    project = _project_or_404(store, project_id)
    if project.userId != user.id:
        raise ForbiddenError("You don't have permission to update this project")

    fields = body.model_dump(exclude_unset=True)
    min_budget = fields.get("minBudget", project.minBudget)
    max_budget = fields.get("maxBudget", project.maxBudget)
    if min_budget is not None and max_budget is not None and min_budget > max_budget:
        raise ValidationError("minBudget must not exceed maxBudget")

    return store.update_project(project_id, fields)


# ---------- MESSAGES ----------

@router.get("/api/messages", response_model=list[Message])
def list_messages(user: User = Depends(get_current_user), store: BaseStore = Depends(get_store)):
    return store.get_messages_by_user(user.id)


@router.get("/api/messages/conversations", response_model=list[ConversationSummary])
def list_conversations(user: User = Depends(get_current_user), store: BaseStore = Depends(get_store)):
    messages = store.get_messages_by_user(user.id)
    counterpart_ids = {counterpart_of(m, user.id) for m in messages}
    return summarize_conversations(messages, user.id, users=store.get_users(counterpart_ids))


@router.get("/api/messages/conversation/{other_user_id}", response_model=list[Message])
def get_conversation(other_user_id: int,
                     user: User = Depends(get_current_user),
                     store: BaseStore = Depends(get_store)):
    return store.get_conversation(user.id, other_user_id)


@router.post("/api/messages/conversation/{other_user_id}/read", response_model=OpenedConversation)
def read_conversation(other_user_id: int,
                      user: User = Depends(get_current_user),
                      store: BaseStore = Depends(get_store)):
    messages, marked = open_conversation(store, user.id, other_user_id)
    return OpenedConversation(marked=marked, messages=messages)


@router.post("/api/messages", response_model=Message, status_code=201)
def send_message(body: MessageCreate,
                 user: User = Depends(get_current_user),
                 store: BaseStore = Depends(get_store)):
    if not store.get_user(body.receiverId):
        raise NotFoundError("Receiver not found")
    if body.projectId is not None and not store.get_project(body.projectId):
        raise NotFoundError("Project not found")

    message = store.create_message(body, sender_id=user.id)
    logger.info(f"[MESSAGES] #{message.id} from user {user.id} to user {body.receiverId}")
    return message


@router.patch("/api/messages/{message_id}/read", response_model=Message)
def mark_message_read(message_id: int,
                      user: User = Depends(get_current_user),
                      store: BaseStore = Depends(get_store)):
    message = store.get_message(message_id)
    if not message:
        raise NotFoundError("Message not found")
    if message.receiverId != user.id:
        raise ForbiddenError("You don't have permission to mark this message as read")
    return store.mark_message_read(message_id)


# ---------- NEWS ----------

@router.get("/api/news", response_model=list[News])
def list_news(limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0),
              store: BaseStore = Depends(get_store)):
    return store.get_all_news(limit, offset)


@router.get("/api/news/{news_id}", response_model=News)
def get_news(news_id: int, store: BaseStore = Depends(get_store)):
    news = store.get_news(news_id)
    if not news:
        raise NotFoundError("News item not found")
    return news


@router.post("/api/news", response_model=News, status_code=201)
def create_news(body: NewsCreate,
                user: User = Depends(require_role("admin")),
                store: BaseStore = Depends(get_store)):
    return store.create_news(body)


# ---------- CHAT ----------

@router.post("/api/chat", response_model=ChatReply)
def chat(body: ChatRequest, responder: ChatResponder = Depends(get_responder)):
    if not body.message.strip():
        raise ValidationError("Message is required")
    return ChatReply(answer=responder.answer(body.message))


# ---------- APP FACTORY ----------

def create_app(store: BaseStore | None = None,
               sessions: SessionStore | None = None,
               verifier: ProductVerifier | None = None,
               responder: ChatResponder | None = None,
               llm_client=None,
               auto_verify: bool = AUTO_VERIFY_PRODUCTS) -> FastAPI:
    """
    Build the API around explicit dependencies.

    Anything not passed in is constructed from configuration: a fresh
    MemoryStore and SessionStore, and the verifier / chatbot selected by
    VERIFIER_BACKEND / CHAT_BACKEND.
    """
    app = FastAPI(
        title="AI Marketplace API",
        description="Marketplace for AI products, custom projects and messaging",
        version="1.0.0"
    )

    if llm_client is None and (VERIFIER_BACKEND == "llm" or CHAT_BACKEND == "llm"):
        llm_client = LLMClient()
        if not llm_client.configured:
            logger.warning("LLM backend selected but LLM_API_KEY is not set - LLM calls will fail")

    app.state.store = store if store is not None else MemoryStore()
    app.state.sessions = sessions if sessions is not None else SessionStore()
    app.state.verifier = verifier or build_verifier(VERIFIER_BACKEND, llm_client)
    app.state.responder = responder or build_responder(CHAT_BACKEND, llm_client)
    app.state.auto_verify = auto_verify

    logger.info(f"Verifier: {app.state.verifier.name}, chat: {app.state.responder.name}, "
                f"auto-verify: {auto_verify}")

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": _format_validation_error(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Last resort: log the traceback, hide details from the client."""
        logger.error(f"Unhandled exception: {exc}")
        logger.error(traceback.format_exc())
        return JSONResponse(status_code=500, content={"message": "An unexpected error occurred"})

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
