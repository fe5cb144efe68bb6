"""FastAPI dependency injection."""

import uuid
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mailrules.config import Settings, get_settings
from mailrules.services.job_store import SqlJobStore
from mailrules.services.mail_store import SqlMailStore
from mailrules.services.rule_application import RuleApplicationRunner
from mailrules.services.rule_store import SqlRuleStore

# Database engine and session factory (initialized in lifespan)
_engine = None
_session_factory = None

security = HTTPBearer()


def _create_engine(settings: Settings):
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def get_session_factory(settings: Settings = Depends(get_settings)) -> async_sessionmaker:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = _create_engine(settings)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


async def get_db(settings: Settings = Depends(get_settings)) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session, committed when the request succeeds."""
    factory = get_session_factory(settings)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_rule_store(db: AsyncSession = Depends(get_db)) -> SqlRuleStore:
    return SqlRuleStore(db)


def get_job_store(db: AsyncSession = Depends(get_db)) -> SqlJobStore:
    return SqlJobStore(db)


def get_mail_store(db: AsyncSession = Depends(get_db)) -> SqlMailStore:
    return SqlMailStore(db)


def get_rule_runner(request: Request, settings: Settings = Depends(get_settings)) -> RuleApplicationRunner:
    """The runner created at start-up, or a lazily created one when the
    lifespan hook has not run."""
    runner = getattr(request.app.state, "rule_runner", None)
    if runner is None:
        runner = RuleApplicationRunner(get_session_factory(settings), settings)
        request.app.state.rule_runner = runner
    return runner


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> uuid.UUID:
    """Extract and validate user_id from JWT token."""
    token = credentials.credentials
    try:
        payload = jwt.decode(
            token,
            settings.jwt_private_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
        user_id = payload.get("sub")
        token_type = payload.get("type")
        if user_id is None or token_type != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload",
            )
        return uuid.UUID(user_id)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token",
        ) from e


def init_db(settings: Settings) -> async_sessionmaker:
    """Initialize database engine and session factory. Called from lifespan."""
    global _engine, _session_factory
    _engine = _create_engine(settings)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


async def shutdown_db() -> None:
    """Dispose of the database engine. Called from lifespan."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
