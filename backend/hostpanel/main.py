import logging
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hostpanel.core.config import Settings
from hostpanel.core.database import Base, create_session_factory
from hostpanel.core.exceptions import PanelError, panel_error_handler
from hostpanel.core.flash import MessageQueue
from hostpanel.core.init_db import init_db
from hostpanel.core.limiter import limiter
from hostpanel.core.log_config import setup_logging
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.auth.router import router as auth_router
from hostpanel.modules.databases import models as db_models  # noqa: F401
from hostpanel.modules.databases.router import backups_router
from hostpanel.modules.databases.router import router as db_router
from hostpanel.modules.databases.router import site_router as site_db_router
from hostpanel.modules.files.router import router as files_router
from hostpanel.modules.ftp import models as ftp_models  # noqa: F401
from hostpanel.modules.ftp.router import router as ftp_router
from hostpanel.modules.mail import models as mail_models  # noqa: F401
from hostpanel.modules.mail.router import router as mail_router
from hostpanel.modules.messages.router import router as messages_router
from hostpanel.modules.services.router import router as services_router
from hostpanel.modules.settings import models as settings_models  # noqa: F401
from hostpanel.modules.settings.router import router as settings_router
from hostpanel.modules.sites import models as site_models  # noqa: F401
from hostpanel.modules.sites.router import router as site_router
from hostpanel.modules.users import models as user_models  # noqa: F401
from hostpanel.modules.wizard import models as wizard_models  # noqa: F401
from hostpanel.modules.wizard.router import router as wizard_router
from hostpanel.system import runner
from hostpanel.system.monitor import get_system_stats

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    runner.DEFAULT_TIMEOUT = settings.command_timeout

    app = FastAPI(title="HostPanel API", version="0.1.0")

    engine, session_factory = create_session_factory(settings.database_url)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.messages = MessageQueue()

    # --- RATE LIMIT (login) ---
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(PanelError, panel_error_handler)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,  # never ["*"] in production
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # --- Register Router ---
    app.include_router(auth_router)
    app.include_router(wizard_router)
    app.include_router(settings_router)
    app.include_router(site_router)
    app.include_router(site_db_router)
    app.include_router(ftp_router)
    app.include_router(files_router)
    app.include_router(db_router)
    app.include_router(backups_router)
    app.include_router(mail_router)
    app.include_router(services_router)
    app.include_router(messages_router)

    @app.on_event("startup")
    def startup_event():
        # create tables if missing
        Base.metadata.create_all(bind=engine)
        db = session_factory()
        try:
            init_db(db, settings)
        finally:
            db.close()
        logger.info("HostPanel API started (database: %s)", engine.url.render_as_string(hide_password=True))

    @app.get("/")
    def read_root():
        return {"message": "HostPanel API is ready"}

    @app.get("/monitor")
    def get_monitor_data(current_user=Depends(get_current_user)):
        data = get_system_stats()
        return {"status": "success", "data": data}

    return app


app = create_app()
