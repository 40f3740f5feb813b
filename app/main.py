from fastapi import FastAPI
from app.routers.admin import admin_router
from app.routers.credits import credits_router
from app.routers.payments import payments_router
from app.routers.subscription import user_router
from app.routers.tasks import tasks_router
from app.routers.webhooks import webhooks_router

from app.core.logging_config import setup_logging

setup_logging()


app = FastAPI(
    title="Sharpii API",
    description="Кредити, підписки Dodo Payments та задачі покращення зображень",
    version="1.0.0"
)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(credits_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(user_router)
app.include_router(tasks_router)
app.include_router(admin_router)
