import logging

from fastapi import FastAPI

from twofactor.api.router import api_router
from twofactor.config import settings
from twofactor.db import SessionLocal, engine
from twofactor.models import account, audit, challenge, issued_token  # noqa: F401
from twofactor.models.account import Account
from twofactor.models.base import Base
from twofactor.services import recovery
from twofactor.services.security import hash_password

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def _seed_default_user() -> None:
    with SessionLocal() as db:
        existing = db.query(Account).filter(Account.username == "demo").first()
        if existing:
            return
        demo = Account(
            email="demo@example.com",
            username="demo",
            password_hash=hash_password("changeme"),
            two_factor_enabled=True,
            two_factor_secret="JBSWY3DPEHPK3PXP",  # base32 for demo
            two_factor_recovery_codes=recovery.generate_batch(settings.recovery_code_count),
            failed_login_count=0,
        )
        db.add(demo)
        db.commit()
        logger.info("Seeded default user 'demo' with password 'changeme'")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.project_name)
    app.include_router(api_router)

    @app.on_event("startup")
    async def startup() -> None:  # pragma: no cover - wiring
        Base.metadata.create_all(bind=engine)
        if settings.seed_default_user:
            _seed_default_user()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("twofactor.main:app", host="0.0.0.0", port=8000, reload=True)
