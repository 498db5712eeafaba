import logging

from fastapi import FastAPI

from vmhost.api import router
from vmhost.config import get_host_settings


logger = logging.getLogger(__name__)

app = FastAPI(title="CF Dev VM Host")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    settings = get_host_settings()
    logger.info(
        "vm-host startup complete backend=%s cache_dir=%s state_linuxkit_dir=%s",
        settings.hypervisor_backend,
        settings.resolved_cache_dir,
        settings.resolved_state_linuxkit_dir,
    )
