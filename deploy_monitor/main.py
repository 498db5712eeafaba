import logging

from fastapi import FastAPI

from deploy_monitor.api import router
from deploy_monitor.config import get_monitor_settings
from deploy_monitor.logging_config import configure_logging


logger = logging.getLogger(__name__)

app = FastAPI(title="CF Dev Deployment Monitor")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    settings = get_monitor_settings()
    logger.info(
        "deploy-monitor startup complete director_url=%s deployment=%s interval=%ss",
        settings.director_url,
        settings.deployment_name,
        settings.progress_interval_sec,
    )
